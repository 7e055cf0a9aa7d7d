"""Length disassembler for 32-bit x86 instructions.

:func:`disasm` decodes one instruction and reports its length, prefixes,
opcode bytes, ModR/M and SIB fields, immediate and displacement values, and
flags that describe what was found or what was wrong with the encoding.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

_C_MODRM = 0x01
_C_IMM8 = 0x02
_C_IMM16 = 0x04
_C_IMM_P66 = 0x10
_C_REL8 = 0x20
_C_REL32 = 0x40
_C_GROUP = 0x80
_C_ERROR = 0xFF

_PRE_NONE = 0x01
_PRE_F2 = 0x02
_PRE_F3 = 0x04
_PRE_66 = 0x08
_PRE_67 = 0x10
_PRE_LOCK = 0x20
_PRE_SEG = 0x40

_DELTA_OPCODES = 0x4A
_DELTA_FPU_REG = 0xF1
_DELTA_FPU_MODRM = 0xF8
_DELTA_PREFIXES = 0x130
_DELTA_OP_LOCK_OK = 0x1A1
_DELTA_OP2_LOCK_OK = 0x1B9
_DELTA_OP_ONLY_MEM = 0x1CB
_DELTA_OP2_ONLY_MEM = 0x1DA

_MAX_LENGTH = 15
_MAX_PREFIXES = 16
_SEGMENT_PREFIXES = frozenset((0x26, 0x2E, 0x36, 0x3E, 0x64, 0x65))

_TABLE = bytes((
    0xa3, 0xa8, 0xa3, 0xa8, 0xa3, 0xa8, 0xa3, 0xa8, 0xa3, 0xa8, 0xa3, 0xa8, 0xa3, 0xa8, 0xa3,
    0xa8, 0xaa, 0xaa, 0xaa, 0xaa, 0xaa, 0xaa, 0xaa, 0xaa, 0xac, 0xaa, 0xb2, 0xaa, 0x9f, 0x9f,
    0x9f, 0x9f, 0xb5, 0xa3, 0xa3, 0xa4, 0xaa, 0xaa, 0xba, 0xaa, 0x96, 0xaa, 0xa8, 0xaa, 0xc3,
    0xc3, 0x96, 0x96, 0xb7, 0xae, 0xd6, 0xbd, 0xa3, 0xc5, 0xa3, 0xa3, 0x9f, 0xc3, 0x9c, 0xaa,
    0xaa, 0xac, 0xaa, 0xbf, 0x03, 0x7f, 0x11, 0x7f, 0x01, 0x7f, 0x01, 0x3f, 0x01, 0x01, 0x90,
    0x82, 0x7d, 0x97, 0x59, 0x59, 0x59, 0x59, 0x59, 0x7f, 0x59, 0x59, 0x60, 0x7d, 0x7f, 0x7f,
    0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x9a, 0x88, 0x7d,
    0x59, 0x50, 0x50, 0x50, 0x50, 0x59, 0x59, 0x59, 0x59, 0x61, 0x94, 0x61, 0x9e, 0x59, 0x59,
    0x85, 0x59, 0x92, 0xa3, 0x60, 0x60, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59, 0x59,
    0x59, 0x59, 0x9f, 0x01, 0x03, 0x01, 0x04, 0x03, 0xd5, 0x03, 0xcc, 0x01, 0xbc, 0x03, 0xf0,
    0x10, 0x10, 0x10, 0x10, 0x50, 0x50, 0x50, 0x50, 0x14, 0x20, 0x20, 0x20, 0x20, 0x01, 0x01,
    0x01, 0x01, 0xc4, 0x02, 0x10, 0x00, 0x00, 0x00, 0x00, 0x01, 0x01, 0xc0, 0xc2, 0x10, 0x11,
    0x02, 0x03, 0x11, 0x03, 0x03, 0x04, 0x00, 0x00, 0x14, 0x00, 0x02, 0x00, 0x00, 0xc6, 0xc8,
    0x02, 0x02, 0x02, 0x02, 0x00, 0x00, 0xff, 0xff, 0xff, 0xff, 0x00, 0x00, 0x00, 0xff, 0xca,
    0x01, 0x01, 0x01, 0x00, 0x06, 0x00, 0x04, 0x00, 0xc0, 0xc2, 0x01, 0x01, 0x03, 0x01, 0xff,
    0xff, 0x01, 0x00, 0x03, 0xc4, 0xc4, 0xc6, 0x03, 0x01, 0x01, 0x01, 0xff, 0x03, 0x03, 0x03,
    0xc8, 0x40, 0x00, 0x0a, 0x00, 0x04, 0x00, 0x00, 0x00, 0x00, 0x7f, 0x00, 0x33, 0x01, 0x00,
    0x00, 0x00, 0x00, 0x00, 0x00, 0xff, 0xbf, 0xff, 0xff, 0x00, 0x00, 0x00, 0x00, 0x07, 0x00,
    0x00, 0xff, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
    0x00, 0xff, 0xff, 0x00, 0x00, 0x00, 0xbf, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
    0x7f, 0x00, 0x00, 0xff, 0x4a, 0x4a, 0x4a, 0x4a, 0x4b, 0x52, 0x4a, 0x4a, 0x4a, 0x4a, 0x4f,
    0x4c, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x55, 0x45, 0x40, 0x4a, 0x4a, 0x4a,
    0x45, 0x59, 0x4d, 0x46, 0x4a, 0x5d, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x4a,
    0x4a, 0x4a, 0x4a, 0x4a, 0x4a, 0x61, 0x63, 0x67, 0x4e, 0x4a, 0x4a, 0x6b, 0x6d, 0x4a, 0x4a,
    0x45, 0x6d, 0x4a, 0x4a, 0x44, 0x45, 0x4a, 0x4a, 0x00, 0x00, 0x00, 0x02, 0x0d, 0x06, 0x06,
    0x06, 0x06, 0x0e, 0x00, 0x00, 0x00, 0x00, 0x06, 0x06, 0x06, 0x00, 0x06, 0x06, 0x02, 0x06,
    0x00, 0x0a, 0x0a, 0x07, 0x07, 0x06, 0x02, 0x05, 0x05, 0x02, 0x02, 0x00, 0x00, 0x04, 0x04,
    0x04, 0x04, 0x00, 0x00, 0x00, 0x0e, 0x05, 0x06, 0x06, 0x06, 0x01, 0x06, 0x00, 0x00, 0x08,
    0x00, 0x10, 0x00, 0x18, 0x00, 0x20, 0x00, 0x28, 0x00, 0x30, 0x00, 0x80, 0x01, 0x82, 0x01,
    0x86, 0x00, 0xf6, 0xcf, 0xfe, 0x3f, 0xab, 0x00, 0xb0, 0x00, 0xb1, 0x00, 0xb3, 0x00, 0xba,
    0xf8, 0xbb, 0x00, 0xc0, 0x00, 0xc1, 0x00, 0xc7, 0xbf, 0x62, 0xff, 0x00, 0x8d, 0xff, 0x00,
    0xc4, 0xff, 0x00, 0xc5, 0xff, 0x00, 0xff, 0xff, 0xeb, 0x01, 0xff, 0x0e, 0x12, 0x08, 0x00,
    0x13, 0x09, 0x00, 0x16, 0x08, 0x00, 0x17, 0x09, 0x00, 0x2b, 0x09, 0x00, 0xae, 0xff, 0x07,
    0xb2, 0xff, 0x00, 0xb4, 0xff, 0x00, 0xb5, 0xff, 0x00, 0xc3, 0x01, 0x00, 0xc7, 0xff, 0xbf,
    0xe7, 0x08, 0x00, 0xf0, 0x02, 0x00,
))


class Flag(enum.IntFlag):
    """What the decoder found in an instruction."""

    MODRM = 0x00000001
    SIB = 0x00000002
    IMM8 = 0x00000004
    IMM16 = 0x00000008
    IMM32 = 0x00000010
    DISP8 = 0x00000020
    DISP16 = 0x00000040
    DISP32 = 0x00000080
    RELATIVE = 0x00000100
    IMM16_2 = 0x00000800
    ERROR = 0x00001000
    ERROR_OPCODE = 0x00002000
    ERROR_LENGTH = 0x00004000
    ERROR_LOCK = 0x00008000
    ERROR_OPERAND = 0x00010000
    PREFIX_REPNZ = 0x01000000
    PREFIX_REPX = 0x02000000
    PREFIX_REP = 0x03000000
    PREFIX_66 = 0x04000000
    PREFIX_67 = 0x08000000
    PREFIX_LOCK = 0x10000000
    PREFIX_SEG = 0x20000000
    PREFIX_ANY = 0x3F000000


@dataclass
class Instruction:
    """One decoded instruction.

    ``imm`` and ``disp`` hold the raw little-endian value of their field; a
    later, narrower write replaces only the low bytes, so ``imm`` of ENTER
    keeps the high byte of its 16-bit operand under the 8-bit one.
    """

    length: int = 0
    p_rep: int = 0
    p_lock: int = 0
    p_seg: int = 0
    p_66: int = 0
    p_67: int = 0
    opcode: int = 0
    opcode2: int = 0
    modrm: int = 0
    modrm_mod: int = 0
    modrm_reg: int = 0
    modrm_rm: int = 0
    sib: int = 0
    sib_scale: int = 0
    sib_index: int = 0
    sib_base: int = 0
    imm: int = 0
    disp: int = 0
    flags: Flag = Flag(0)

    def has_error(self) -> bool:
        return bool(self.flags & Flag.ERROR)


def _read(data: bytes, pos: int, size: int) -> int:
    chunk = data[pos:pos + size]
    return int.from_bytes(chunk.ljust(size, b"\0"), "little")


def _store(old: int, value: int, size: int) -> int:
    mask = (1 << (8 * size)) - 1
    return (old & ~mask) | value


def _lookup(base: int, opcode: int) -> int:
    return _TABLE[base + _TABLE[base + opcode // 4] + opcode % 4]


def _lock_allowed(two_byte: bool, opcode: int, m_reg: int) -> bool:
    if two_byte:
        start, end, op = _DELTA_OP2_LOCK_OK, _DELTA_OP_ONLY_MEM, opcode
    else:
        start, end, op = _DELTA_OP_LOCK_OK, _DELTA_OP2_LOCK_OK, opcode & 0xFE
    for pos in range(start, end, 2):
        if _TABLE[pos] == op:
            return not ((_TABLE[pos + 1] << m_reg) & 0x80)
    return False


def _register_form_invalid(two_byte: bool, opcode: int, m_reg: int, pref: int) -> bool:
    if two_byte:
        start, end = _DELTA_OP2_ONLY_MEM, len(_TABLE)
    else:
        start, end = _DELTA_OP_ONLY_MEM, _DELTA_OP2_ONLY_MEM
    for pos in range(start, end, 3):
        if _TABLE[pos] == opcode:
            return bool(_TABLE[pos + 1] & pref) and not ((_TABLE[pos + 2] << m_reg) & 0x80)
    return False


def disasm(code: bytes | bytearray | memoryview) -> Instruction:
    """Decode the instruction at the start of ``code``.

    Raises ValueError if ``code`` is empty or ends inside the instruction.
    """
    data = bytes(code)
    if not data:
        raise ValueError("no code to disassemble")

    ins = Instruction()
    p = 0
    pref = 0
    c = 0
    for _ in range(_MAX_PREFIXES):
        c = _read(data, p, 1)
        p += 1
        if c == 0xF3:
            ins.p_rep = c
            pref |= _PRE_F3
        elif c == 0xF2:
            ins.p_rep = c
            pref |= _PRE_F2
        elif c == 0xF0:
            ins.p_lock = c
            pref |= _PRE_LOCK
        elif c in _SEGMENT_PREFIXES:
            ins.p_seg = c
            pref |= _PRE_SEG
        elif c == 0x66:
            ins.p_66 = c
            pref |= _PRE_66
        elif c == 0x67:
            ins.p_67 = c
            pref |= _PRE_67
        else:
            break

    flags = pref << 23
    if not pref:
        pref |= _PRE_NONE

    ht = 0
    ins.opcode = c
    if c == 0x0F:
        c = _read(data, p, 1)
        p += 1
        ins.opcode2 = c
        ht = _DELTA_OPCODES
    elif 0xA0 <= c <= 0xA3:
        if pref & _PRE_67:
            pref |= _PRE_66
        else:
            pref &= ~_PRE_66

    opcode = c
    cflags = _lookup(ht, opcode)

    if cflags == _C_ERROR:
        flags |= Flag.ERROR | Flag.ERROR_OPCODE
        cflags = 0
        if (opcode & 0xFD) == 0x24:
            cflags += 1

    group_mask = 0
    if cflags & _C_GROUP:
        offset = ht + (cflags & 0x7F)
        packed = _TABLE[offset] | (_TABLE[offset + 1] << 8)
        cflags = packed & 0xFF
        group_mask = packed >> 8

    two_byte = bool(ins.opcode2)
    if two_byte and _lookup(_DELTA_PREFIXES, opcode) & pref:
        flags |= Flag.ERROR | Flag.ERROR_OPCODE

    if cflags & _C_MODRM:
        flags |= Flag.MODRM
        c = _read(data, p, 1)
        p += 1
        ins.modrm = c
        ins.modrm_mod = m_mod = c >> 6
        ins.modrm_rm = m_rm = c & 7
        ins.modrm_reg = m_reg = (c & 0x3F) >> 3

        if group_mask and ((group_mask << m_reg) & 0x80):
            flags |= Flag.ERROR | Flag.ERROR_OPCODE

        if not two_byte and 0xD9 <= opcode <= 0xDF:
            fpu = opcode - 0xD9
            if m_mod == 3:
                bits = _TABLE[_DELTA_FPU_MODRM + fpu * 8 + m_reg] << m_rm
            else:
                bits = _TABLE[_DELTA_FPU_REG + fpu] << m_reg
            if bits & 0x80:
                flags |= Flag.ERROR | Flag.ERROR_OPCODE

        if pref & _PRE_LOCK:
            if m_mod == 3 or not _lock_allowed(two_byte, opcode, m_reg):
                flags |= Flag.ERROR | Flag.ERROR_LOCK

        operand_error = False
        special = False
        if two_byte:
            if opcode in (0x20, 0x22):
                m_mod = 3
                special = True
                operand_error = m_reg > 4 or m_reg == 1
            elif opcode in (0x21, 0x23):
                m_mod = 3
                special = True
                operand_error = m_reg in (4, 5)
        elif opcode == 0x8C:
            special = True
            operand_error = m_reg > 5
        elif opcode == 0x8E:
            special = True
            operand_error = m_reg == 1 or m_reg > 5

        if not special:
            if m_mod == 3:
                operand_error = _register_form_invalid(two_byte, opcode, m_reg, pref)
            elif two_byte:
                if opcode in (0x50, 0xD7, 0xF7):
                    operand_error = bool(pref & (_PRE_NONE | _PRE_66))
                elif opcode == 0xD6:
                    operand_error = bool(pref & (_PRE_F2 | _PRE_F3))
                elif opcode == 0xC5:
                    operand_error = True
        if operand_error:
            flags |= Flag.ERROR | Flag.ERROR_OPERAND

        c = _read(data, p, 1)
        p += 1
        if m_reg <= 1:
            if opcode == 0xF6:
                cflags |= _C_IMM8
            elif opcode == 0xF7:
                cflags |= _C_IMM_P66

        disp_size = 0
        if m_mod == 0:
            if pref & _PRE_67:
                if m_rm == 6:
                    disp_size = 2
            elif m_rm == 5:
                disp_size = 4
        elif m_mod == 1:
            disp_size = 1
        elif m_mod == 2:
            disp_size = 2 if pref & _PRE_67 else 4

        if m_mod != 3 and m_rm == 4 and not (pref & _PRE_67):
            flags |= Flag.SIB
            p += 1
            ins.sib = c
            ins.sib_scale = c >> 6
            ins.sib_index = (c & 0x3F) >> 3
            ins.sib_base = c & 7
            if ins.sib_base == 5 and not (m_mod & 1):
                disp_size = 4

        p -= 1
        if disp_size:
            flags |= {1: Flag.DISP8, 2: Flag.DISP16, 4: Flag.DISP32}[disp_size]
            ins.disp = _store(ins.disp, _read(data, p, disp_size), disp_size)
        p += disp_size
    elif pref & _PRE_LOCK:
        flags |= Flag.ERROR | Flag.ERROR_LOCK

    done = False
    jump_rel32 = False
    if cflags & _C_IMM_P66:
        if cflags & _C_REL32:
            if pref & _PRE_66:
                flags |= Flag.IMM16 | Flag.RELATIVE
                ins.imm = _store(ins.imm, _read(data, p, 2), 2)
                p += 2
                done = True
            else:
                jump_rel32 = True
        elif pref & _PRE_66:
            flags |= Flag.IMM16
            ins.imm = _store(ins.imm, _read(data, p, 2), 2)
            p += 2
        else:
            flags |= Flag.IMM32
            ins.imm = _store(ins.imm, _read(data, p, 4), 4)
            p += 4

    if not done:
        if not jump_rel32:
            if cflags & _C_IMM16:
                word = _read(data, p, 2)
                if flags & Flag.IMM32:
                    flags |= Flag.IMM16
                    ins.disp = _store(ins.disp, word, 2)
                elif flags & Flag.IMM16:
                    flags |= Flag.IMM16_2
                    ins.disp = _store(ins.disp, word, 2)
                else:
                    flags |= Flag.IMM16
                    ins.imm = _store(ins.imm, word, 2)
                p += 2
            if cflags & _C_IMM8:
                flags |= Flag.IMM8
                ins.imm = _store(ins.imm, _read(data, p, 1), 1)
                p += 1
        if jump_rel32 or cflags & _C_REL32:
            flags |= Flag.IMM32 | Flag.RELATIVE
            ins.imm = _store(ins.imm, _read(data, p, 4), 4)
            p += 4
        elif cflags & _C_REL8:
            flags |= Flag.IMM8 | Flag.RELATIVE
            ins.imm = _store(ins.imm, _read(data, p, 1), 1)
            p += 1

    if p > len(data):
        raise ValueError(f"instruction needs {p} bytes, only {len(data)} given")

    ins.length = p
    if p > _MAX_LENGTH:
        flags |= Flag.ERROR | Flag.ERROR_LENGTH
        ins.length = _MAX_LENGTH
    ins.flags = Flag(flags)
    return ins