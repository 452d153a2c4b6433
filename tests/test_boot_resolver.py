"""Tests for boot/resolver.py - the boot menu state machine.

This test suite covers:
- Scanning: case-insensitive .iso filter, missing directory
- Probing: config priority, probe failures acknowledged and skipped
- Menu building in directory order with terminal entries
- Chain-loading: scope and loopback always restored
- The selection loop ending in halt or reboot
"""

import pytest

from multiboot_usb.boot.exceptions import NestedConfigError
from multiboot_usb.boot.resolver import BootMenuResolver, is_image_name
from multiboot_usb.boot.scope import BootEnvironment
from multiboot_usb.domain import BootState, ImageCandidate, TerminalAction

from conftest import FakeBootRuntime


class TestScan:
    def test_filters_image_names(self, two_image_runtime):
        resolver = BootMenuResolver(two_image_runtime)

        candidates = resolver.scan()

        assert [c.path for c in candidates] == ["/isos/x.iso", "/isos/y.ISO"]
        assert resolver.state is BootState.SCANNING

    def test_missing_directory_is_empty(self):
        resolver = BootMenuResolver(FakeBootRuntime(directory=None))

        assert resolver.scan() == []

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("debian.iso", True),
            ("UBUNTU.ISO", True),
            ("mixed.IsO", True),
            (".iso", False),
            ("notes.iso.txt", False),
            ("image.img", False),
        ],
    )
    def test_is_image_name(self, name, expected):
        assert is_image_name(name) is expected


class TestProbe:
    def test_prefers_grub_loopback_cfg(self):
        runtime = FakeBootRuntime(
            images={
                "/isos/a.iso": {
                    "label": "A",
                    "files": {"/boot/grub/loopback.cfg", "/boot/loopback.cfg"},
                }
            }
        )
        resolver = BootMenuResolver(runtime)

        probed = resolver.probe(ImageCandidate(path="/isos/a.iso"))

        assert probed.config_path == "/boot/grub/loopback.cfg"
        assert probed.label == "A"
        assert runtime.active == 0

    def test_no_config_is_acknowledged_and_skipped(self):
        runtime = FakeBootRuntime(images={"/isos/plain.iso": {"label": "DATA", "files": set()}})
        resolver = BootMenuResolver(runtime)

        probed = resolver.probe(ImageCandidate(path="/isos/plain.iso"))

        assert not probed.attachable
        assert len(runtime.acknowledged) == 1
        assert "/isos/plain.iso" in runtime.acknowledged[0]
        assert runtime.active == 0

    def test_attach_failure_is_a_probe_failure(self):
        runtime = FakeBootRuntime(fail_attach={"/isos/broken.iso"})
        resolver = BootMenuResolver(runtime)

        probed = resolver.probe(ImageCandidate(path="/isos/broken.iso"))

        assert not probed.attachable
        assert "cannot attach" in runtime.acknowledged[0]
        assert not resolver.slot.held

    def test_unattended_failures_are_not_acknowledged(self):
        runtime = FakeBootRuntime(images={"/isos/plain.iso": {"files": set()}})
        resolver = BootMenuResolver(runtime, acknowledge_failures=False)

        resolver.probe(ImageCandidate(path="/isos/plain.iso"))

        assert runtime.acknowledged == []

    def test_detach_failure_keeps_detected_config(self):
        runtime = FakeBootRuntime(
            images={"/isos/a.iso": {"label": "A", "files": {"/boot/loopback.cfg"}}},
            fail_detach={"/isos/a.iso"},
        )
        resolver = BootMenuResolver(runtime)

        probed = resolver.probe(ImageCandidate(path="/isos/a.iso"))

        assert probed.config_path == "/boot/loopback.cfg"
        assert probed.label == "A"
        assert runtime.acknowledged == []
        assert not resolver.slot.held

    def test_detach_failure_without_config_is_skipped_once(self):
        runtime = FakeBootRuntime(
            images={"/isos/plain.iso": {"files": set()}}, fail_detach={"/isos/plain.iso"}
        )
        resolver = BootMenuResolver(runtime)

        probed = resolver.probe(ImageCandidate(path="/isos/plain.iso"))

        assert not probed.attachable
        assert len(runtime.acknowledged) == 1
        assert "no loopback configuration found" in runtime.acknowledged[0]


class TestBuildMenu:
    def test_two_entries_in_scan_order(self, two_image_runtime):
        resolver = BootMenuResolver(two_image_runtime)

        menu = resolver.build_menu()

        assert menu.titles == [
            "/isos/x.iso (/boot/grub/loopback.cfg)",
            "/isos/y.ISO (/boot/loopback.cfg)",
            "halt",
            "reboot",
        ]
        assert resolver.state is BootState.MENU_BUILT

    def test_at_most_one_attachment(self, two_image_runtime):
        BootMenuResolver(two_image_runtime).build_menu()

        assert two_image_runtime.max_active == 1
        assert two_image_runtime.events == [
            ("attach", "/isos/x.iso"),
            ("detach", "/isos/x.iso"),
            ("attach", "/isos/y.ISO"),
            ("detach", "/isos/y.ISO"),
        ]

    def test_entries_follow_directory_order(self):
        runtime = FakeBootRuntime(
            directory=["y.ISO", "z.txt", "x.iso"],
            images={
                "/isos/x.iso": {"files": {"/boot/grub/loopback.cfg"}},
                "/isos/y.ISO": {"files": {"/boot/loopback.cfg"}},
            },
        )

        menu = BootMenuResolver(runtime).build_menu()

        assert [entry.image_path for entry in menu.entries] == ["/isos/y.ISO", "/isos/x.iso"]

    def test_skipped_candidates_are_recorded(self):
        runtime = FakeBootRuntime(
            directory=["good.iso", "bad.iso"],
            images={"/isos/good.iso": {"files": {"/boot/loopback.cfg"}}},
        )
        resolver = BootMenuResolver(runtime)

        menu = resolver.build_menu()

        assert len(menu.entries) == 1
        assert [c.path for c in resolver.skipped] == ["/isos/bad.iso"]

    def test_empty_directory_still_has_terminals(self):
        menu = BootMenuResolver(FakeBootRuntime(directory=[])).build_menu()

        assert menu.titles == ["halt", "reboot"]

    def test_custom_image_directory(self):
        runtime = FakeBootRuntime(
            directory=["a.iso"],
            images={"/images/a.iso": {"files": {"/boot/grub/loopback.cfg"}}},
        )

        menu = BootMenuResolver(runtime, image_directory="/images").build_menu()

        assert menu.entries[0].image_path == "/images/a.iso"


class TestChainLoad:
    def test_scope_binds_loop_root_and_exports_path(self, two_image_runtime):
        environment = BootEnvironment(root="(hd0,gpt3)")
        resolver = BootMenuResolver(two_image_runtime, environment)
        menu = resolver.build_menu()

        state = resolver.chain_load(menu.entries[0])

        config_path, scope, active = two_image_runtime.ran[0]
        assert config_path == "/boot/grub/loopback.cfg"
        assert scope.root == "(loop)"
        assert scope.exported_dict() == {"iso_path": "/isos/x.iso"}
        assert active == 1
        assert state is BootState.RETURNED_TO_MENU
        assert environment.root == "(hd0,gpt3)"
        assert environment.variables == {}
        assert two_image_runtime.active == 0

    def test_nested_config_error_returns_to_menu(self, two_image_runtime):
        environment = BootEnvironment(root="(hd0,gpt3)")
        resolver = BootMenuResolver(two_image_runtime, environment)
        menu = resolver.build_menu()
        two_image_runtime.config_error = NestedConfigError("/boot/grub/loopback.cfg", "bad")

        assert resolver.chain_load(menu.entries[0]) is BootState.RETURNED_TO_MENU
        assert environment.root == "(hd0,gpt3)"
        assert two_image_runtime.active == 0

    def test_unexpected_error_propagates_after_cleanup(self, two_image_runtime):
        environment = BootEnvironment(root="(hd0,gpt3)")
        resolver = BootMenuResolver(two_image_runtime, environment)
        menu = resolver.build_menu()
        two_image_runtime.config_error = KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            resolver.chain_load(menu.entries[1])

        assert environment.root == "(hd0,gpt3)"
        assert not resolver.slot.held
        assert two_image_runtime.active == 0


class TestRun:
    def test_select_then_reboot(self, two_image_runtime):
        resolver = BootMenuResolver(two_image_runtime)
        choices = []

        def selector(menu):
            if not choices:
                choices.append(menu.entries[1])
                return menu.entries[1]
            return TerminalAction.REBOOT

        assert resolver.run(selector) is BootState.REBOOTED
        assert two_image_runtime.rebooted
        assert resolver.history[-5:] == [
            BootState.SELECTED,
            BootState.CHAIN_LOADING,
            BootState.RETURNED_TO_MENU,
            BootState.SELECTED,
            BootState.REBOOTED,
        ]

    def test_halt(self):
        runtime = FakeBootRuntime(directory=[])

        assert BootMenuResolver(runtime).run(lambda menu: TerminalAction.HALT) is (
            BootState.HALTED
        )
        assert runtime.halted
