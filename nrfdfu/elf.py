"""Extraction of a flat, flashable firmware image from a 32-bit ELF file."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import NamedTuple

log = logging.getLogger(__name__)

_ELF_MAGIC = b"\x7fELF"
_ELFCLASS32 = 1
_ELFCLASS64 = 2
_ENDIANNESS = {1: "<", 2: ">"}

PT_LOAD = 1
SHT_NULL = 0
SHT_NOBITS = 8

_HEADER_FORMAT = "HHIIIIIHHHHHH"
_HEADER_SIZE = 16 + struct.calcsize("<" + _HEADER_FORMAT)
_PROGRAM_FORMAT = "IIIIIIII"
_SECTION_FORMAT = "IIIIIIIIII"

MIN_FLASH_ADDR = 0x1000


class ElfError(Exception):
    """The firmware file cannot be turned into a flashable image."""


class _ProgramHeader(NamedTuple):
    p_type: int
    p_offset: int
    p_vaddr: int
    p_paddr: int
    p_filesz: int
    p_memsz: int
    p_flags: int
    p_align: int


class _SectionHeader(NamedTuple):
    sh_name: int
    sh_type: int
    sh_flags: int
    sh_addr: int
    sh_offset: int
    sh_size: int
    sh_link: int
    sh_info: int
    sh_addralign: int
    sh_entsize: int

    def file_range(self) -> tuple[int, int] | None:
        if self.sh_type == SHT_NOBITS:
            return None
        return self.sh_offset, self.sh_size


@dataclass(frozen=True)
class _Chunk:
    flash_addr: int
    data: bytes


@dataclass(frozen=True)
class _Elf32:
    programs: list[_ProgramHeader]
    sections: list[_SectionHeader]
    strings: bytes

    def section_name(self, section: _SectionHeader) -> str:
        start = section.sh_name
        end = self.strings.find(b"\0", start)
        if end < 0:
            end = len(self.strings)
        return self.strings[start:end].decode("utf-8", errors="replace")


def _read_table(data: bytes, offset: int, count: int, entsize: int,
                fmt: str, what: str) -> list[tuple[int, ...]]:
    if count == 0:
        return []
    size = struct.calcsize(fmt)
    if entsize != size:
        raise ElfError(f"invalid ELF {what} header size")
    end = offset + count * size
    if end > len(data):
        raise ElfError(f"invalid ELF {what} header offset/size")
    return list(struct.iter_unpack(fmt, data[offset:end]))


def _parse(data: bytes) -> _Elf32:
    if len(data) < 16 or data[:4] != _ELF_MAGIC:
        raise ElfError("failed to parse firmware as ELF file: unknown file magic")
    elf_class = data[4]
    if elf_class == _ELFCLASS64:
        raise ElfError(
            "firmware file has unsupported format Elf64 "
            "(only 32-bit ELF files are supported)"
        )
    if elf_class != _ELFCLASS32:
        raise ElfError("failed to parse firmware as ELF file: invalid ELF class")
    endian = _ENDIANNESS.get(data[5])
    if endian is None:
        raise ElfError("invalid ELF endianness")
    if len(data) < _HEADER_SIZE:
        raise ElfError("invalid ELF header size or alignment")

    (_, _, _, _, phoff, shoff, _, _, phentsize, phnum,
     shentsize, shnum, shstrndx) = struct.unpack_from(endian + _HEADER_FORMAT, data, 16)

    programs = [
        _ProgramHeader(*fields)
        for fields in _read_table(data, phoff, phnum, phentsize,
                                  endian + _PROGRAM_FORMAT, "program")
    ]
    sections = [
        _SectionHeader(*fields)
        for fields in _read_table(data, shoff, shnum, shentsize,
                                  endian + _SECTION_FORMAT, "section")
    ]

    strings = b""
    if shstrndx != 0 and sections:
        if shstrndx >= len(sections):
            raise ElfError("invalid ELF e_shstrndx")
        strtab = sections[shstrndx]
        if strtab.sh_type != SHT_NOBITS:
            end = strtab.sh_offset + strtab.sh_size
            if end > len(data):
                raise ElfError("invalid ELF shstrtab data")
            strings = data[strtab.sh_offset:end]

    return _Elf32(programs, sections, strings)


def _ignored_prefix(elf: _Elf32, index: int, program: _ProgramHeader) -> int | None:
    """Smallest offset into the program at which a contained section starts."""
    prog_offset, prog_size = program.p_offset, program.p_filesz
    found: int | None = None
    for sidx, section in enumerate(elf.sections):
        name = elf.section_name(section)
        if section.sh_type == SHT_NULL:
            log.debug("Ignoring NULL section (%r)", name)
            continue
        file_range = section.file_range()
        if file_range is None:
            log.debug("Ignoring section (%r) without range", name)
            continue
        sec_offset, sec_size = file_range
        if not (sec_offset >= prog_offset
                and sec_offset + sec_size <= prog_offset + prog_size):
            log.debug("Section %r is not contained in this program", name)
            continue
        offset_in_program = sec_offset - prog_offset
        log.debug(
            "Program #%d file range contains section #%d %s "
            "(offset in program data: %#x), program will be emitted.",
            index, sidx, name, offset_in_program,
        )
        if found is None or offset_in_program < found:
            found = offset_in_program
    return found


def _collect_chunks(data: bytes, elf: _Elf32) -> list[_Chunk]:
    chunks = []
    for index, program in enumerate(elf.programs):
        end = program.p_offset + program.p_filesz
        if end > len(data):
            raise ElfError("failed to load segment data (corrupt ELF?)")
        segment = data[program.p_offset:end]
        if not segment or program.p_type != PT_LOAD:
            continue
        log.debug(
            "Analyzing PT_LOAD program #%d in file range %d+%d, physical starting at %#x",
            index, program.p_offset, program.p_filesz, program.p_paddr,
        )
        ignore = _ignored_prefix(elf, index, program)
        if ignore is None:
            continue
        flash_addr = program.p_paddr + ignore
        if flash_addr < MIN_FLASH_ADDR:
            raise ElfError(
                f"firmware starts at address {flash_addr:#x}, expected an address "
                "equal or higher than 0x1000 to avoid a collision with the bootloader"
            )
        chunks.append(_Chunk(flash_addr, segment[ignore:]))
    return chunks


def read_elf_image(data: bytes) -> bytes:
    """Return the loadable bytes of an ELF32 file as one contiguous image.

    The image starts at the lowest loaded address; gaps between segments are
    filled with zeros.
    """
    data = bytes(data)
    elf = _parse(data)
    chunks = sorted(_collect_chunks(data, elf), key=lambda chunk: chunk.flash_addr)

    for first, second in zip(chunks, chunks[1:]):
        if second.flash_addr < first.flash_addr + len(first.data):
            raise ElfError(f"overlapping chunks at {second.flash_addr:#x}")

    if not chunks:
        raise ElfError(
            "no loadable program segments found; ensure that the linker is "
            "invoked correctly (passing the linker script)"
        )

    image = bytearray()
    addr = chunks[0].flash_addr
    log.debug("firmware starts at %#x", addr)

    for chunk in chunks:
        if chunk.flash_addr < addr:
            raise ElfError(
                f"overlapping program segments at 0x{chunk.flash_addr:08x} (corrupt ELF?)"
            )
        gap = chunk.flash_addr - addr
        if gap:
            image.extend(bytes(gap))
            log.debug("0x%08x-0x%08x (gap)", addr, addr + gap - 1)
        addr += gap
        image.extend(chunk.data)
        log.debug("0x%08x-0x%08x", chunk.flash_addr, chunk.flash_addr + len(chunk.data) - 1)
        addr += len(chunk.data)

    return bytes(image)