"""Assemble bootable GRUB ISO images from a kernel, a grub.cfg and a ramdisk."""

__version__ = "0.1.0"
