"""Boot-time menu resolution and the GRUB configuration that implements it."""
