"""Tests for boot/scope.py and boot/loopback.py."""

import pytest

from multiboot_usb.boot.exceptions import LoopbackBusyError, LoopbackError
from multiboot_usb.boot.loopback import LoopbackSlot
from multiboot_usb.boot.scope import BootEnvironment

from conftest import FakeBootRuntime


class TestBootEnvironment:
    def test_initial_scope(self):
        environment = BootEnvironment(root="(hd0,gpt3)", lang="en")

        assert environment.root == "(hd0,gpt3)"
        assert environment.variables == {"lang": "en"}

    def test_chain_scope_merges_exports(self):
        environment = BootEnvironment(root="(hd0,gpt3)", lang="en")

        with environment.chain_scope("(loop)", iso_path="/isos/a.iso") as scope:
            assert scope is environment.scope
            assert environment.root == "(loop)"
            assert environment.variables == {"lang": "en", "iso_path": "/isos/a.iso"}

        assert environment.root == "(hd0,gpt3)"
        assert environment.variables == {"lang": "en"}

    def test_chain_scope_restores_on_error(self):
        environment = BootEnvironment(root="(hd0,gpt3)")
        before = environment.snapshot()

        with pytest.raises(RuntimeError):
            with environment.chain_scope("(loop)", iso_path="/isos/a.iso"):
                raise RuntimeError("nested configuration failed")

        assert environment.snapshot() == before

    def test_nested_chain_scopes(self):
        environment = BootEnvironment(root="(hd0,gpt3)")

        with environment.chain_scope("(loop)", iso_path="/isos/a.iso"):
            with environment.chain_scope("(loop1)", iso_path="/isos/b.iso"):
                assert environment.variables["iso_path"] == "/isos/b.iso"
            assert environment.variables["iso_path"] == "/isos/a.iso"
            assert environment.root == "(loop)"


class TestLoopbackSlot:
    def test_attach_and_release(self):
        runtime = FakeBootRuntime()
        slot = LoopbackSlot(runtime)

        with slot.attached("/isos/a.iso") as device:
            assert device == "loop"
            assert slot.held
            assert slot.holder == "/isos/a.iso"

        assert not slot.held
        assert runtime.active == 0

    def test_second_attachment_is_refused(self):
        runtime = FakeBootRuntime()
        slot = LoopbackSlot(runtime)

        with slot.attached("/isos/a.iso"):
            with pytest.raises(LoopbackBusyError) as excinfo:
                with slot.attached("/isos/b.iso"):
                    pass
            assert excinfo.value.held_by == "/isos/a.iso"
            assert runtime.active == 1

        assert runtime.max_active == 1

    def test_released_when_block_raises(self):
        runtime = FakeBootRuntime()
        slot = LoopbackSlot(runtime)

        with pytest.raises(ValueError):
            with slot.attached("/isos/a.iso"):
                raise ValueError("boom")

        assert not slot.held
        assert runtime.events[-1] == ("detach", "/isos/a.iso")

    def test_failed_attach_leaves_slot_free(self):
        runtime = FakeBootRuntime(fail_attach={"/isos/bad.iso"})
        slot = LoopbackSlot(runtime)

        with pytest.raises(LoopbackError):
            with slot.attached("/isos/bad.iso"):
                pass

        assert not slot.held
        assert runtime.events == []
