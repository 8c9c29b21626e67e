"""Flash firmware onto nRF devices through the serial DFU bootloader."""

__version__ = "0.1.3"

__all__ = ["elf", "flasher", "init_packet", "messages", "slip"]