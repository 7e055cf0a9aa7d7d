import pytest

from bulbcore.hde32 import Flag, disasm

VALID = [
    b"\x90",                          # nop
    b"\x8b\xc1",                      # mov eax, ecx
    b"\x8b\x04\x24",                  # mov eax, [esp]
    b"\x8b\x44\x24\x08",              # mov eax, [esp+8]
    b"\x8b\x05\x78\x56\x34\x12",      # mov eax, [disp32]
    b"\xb8\x01\x00\x00\x00",          # mov eax, imm32
    b"\x66\xb8\x01\x00",              # mov ax, imm16
    b"\xe9\x10\x00\x00\x00",          # jmp rel32
    b"\xe8\x10\x00\x00\x00",          # call rel32
    b"\x66\xe9\x10\x00",              # jmp rel16
    b"\x74\x05",                      # je rel8
    b"\x0f\x84\x00\x01\x00\x00",      # jz rel32
    b"\xc2\x08\x00",                  # ret imm16
    b"\xc8\x10\x00\x00",              # enter
    b"\xf6\xc1\x01",                  # test cl, imm8
    b"\xf6\xd1",                      # not cl
    b"\xf3\xa4",                      # rep movsb
    b"\x64\xa1\x30\x00\x00\x00",      # mov eax, fs:[moffs32]
    b"\x67\xa1\x30\x00",              # mov eax, [moffs16]
    b"\xf0\x01\x08",                  # lock add [eax], ecx
]


@pytest.mark.parametrize("code", VALID)
def test_length_matches_encoding(code):
    ins = disasm(code)
    assert ins.length == len(code)
    assert not ins.has_error()


@pytest.mark.parametrize("code", VALID)
def test_trailing_bytes_do_not_change_length(code):
    assert disasm(code + b"\x90\xcc\xcc\xcc").length == len(code)


@pytest.mark.parametrize("code", VALID)
def test_accepts_bytearray_and_memoryview(code):
    assert disasm(bytearray(code)) == disasm(memoryview(code))


def test_opcode_fields():
    code = b"\x0f\x84\x00\x01\x00\x00"
    ins = disasm(code)
    assert ins.opcode == code[0]
    assert ins.opcode2 == code[1]


def test_relative_jump_immediate():
    code = b"\xe9\x10\x20\x30\x00"
    ins = disasm(code)
    assert Flag.RELATIVE in ins.flags
    assert Flag.IMM32 in ins.flags
    assert ins.imm == int.from_bytes(code[1:], "little")


def test_rel16_with_operand_size_prefix():
    code = b"\x66\xe9\x34\x12"
    ins = disasm(code)
    assert Flag.IMM16 in ins.flags and Flag.RELATIVE in ins.flags
    assert Flag.PREFIX_66 in ins.flags
    assert ins.p_66 == code[0]
    assert ins.imm == int.from_bytes(code[2:], "little")


def test_short_jump_is_relative_imm8():
    code = b"\x74\x05"
    ins = disasm(code)
    assert Flag.IMM8 in ins.flags and Flag.RELATIVE in ins.flags
    assert ins.imm == code[1]


def test_sib_and_disp8():
    code = b"\x8b\x44\x24\x08"
    ins = disasm(code)
    assert Flag.MODRM in ins.flags
    assert Flag.SIB in ins.flags
    assert Flag.DISP8 in ins.flags
    assert ins.modrm == code[1]
    assert ins.sib == code[2]
    assert ins.disp == code[3]


def test_disp32_without_sib():
    code = b"\x8b\x05\x78\x56\x34\x12"
    ins = disasm(code)
    assert Flag.DISP32 in ins.flags
    assert Flag.SIB not in ins.flags
    assert ins.disp == int.from_bytes(code[2:], "little")


def test_register_form_has_no_displacement():
    ins = disasm(b"\x8b\xc1")
    no_disp = Flag.DISP8 | Flag.DISP16 | Flag.DISP32 | Flag.SIB
    assert (ins.flags & no_disp) == Flag(0)
    assert ins.flags == Flag.MODRM
    assert ins.length == 2


def test_ret_imm16_value():
    code = b"\xc2\x08\x00"
    ins = disasm(code)
    assert Flag.IMM16 in ins.flags
    assert ins.imm == int.from_bytes(code[1:], "little")


def test_enter_has_both_immediates():
    ins = disasm(b"\xc8\x10\x00\x00")
    assert Flag.IMM16 in ins.flags
    assert Flag.IMM8 in ins.flags


def test_rep_prefix_recorded():
    code = b"\xf3\xa4"
    ins = disasm(code)
    assert ins.p_rep == code[0]
    assert Flag.PREFIX_REPX in ins.flags
    assert Flag.PREFIX_REPNZ not in ins.flags


def test_segment_prefix_recorded():
    code = b"\x64\xa1\x30\x00\x00\x00"
    ins = disasm(code)
    assert ins.p_seg == code[0]
    assert Flag.PREFIX_SEG in ins.flags
    assert Flag.IMM32 in ins.flags


def test_address_size_prefix_shrinks_moffs():
    code = b"\x67\xa1\x30\x00"
    ins = disasm(code)
    assert Flag.IMM16 in ins.flags
    assert Flag.PREFIX_67 in ins.flags
    assert ins.length == len(code)


def test_no_prefix_means_no_prefix_flags():
    ins = disasm(b"\x90")
    assert (ins.flags & Flag.PREFIX_ANY) == Flag(0)
    assert ins.flags == Flag(0)
    assert ins.length == 1


def test_lock_on_register_operand_is_error():
    ins = disasm(b"\xf0\x01\xc8")
    assert ins.has_error()
    assert Flag.ERROR_LOCK in ins.flags


def test_lock_without_modrm_is_error():
    ins = disasm(b"\xf0\x90")
    assert ins.has_error()
    assert Flag.ERROR_LOCK in ins.flags
    assert ins.p_lock == 0xF0


def test_lock_on_memory_add_is_allowed():
    ins = disasm(b"\xf0\x01\x08")
    assert Flag.PREFIX_LOCK in ins.flags
    assert Flag.ERROR_LOCK not in ins.flags


def test_invalid_two_byte_opcode():
    code = b"\x0f\x04"
    ins = disasm(code)
    assert ins.has_error()
    assert Flag.ERROR_OPCODE in ins.flags
    assert ins.length == len(code)


def test_segment_register_operand_error():
    code = b"\x8c\xf0"
    ins = disasm(code)
    assert Flag.ERROR_OPERAND in ins.flags
    assert ins.length == len(code)


def test_far_jump_register_form_is_operand_error():
    ins = disasm(b"\xff\xe8")
    assert Flag.ERROR_OPERAND in ins.flags


def test_near_jump_register_form_is_valid():
    ins = disasm(b"\xff\xe0")
    assert not ins.has_error()


def test_too_long_instruction_is_clamped():
    ins = disasm(b"\x66" * 15 + b"\x90")
    assert ins.length == 15
    assert Flag.ERROR_LENGTH in ins.flags
    assert ins.has_error()


def test_empty_code_raises():
    with pytest.raises(ValueError):
        disasm(b"")


@pytest.mark.parametrize("code", [b"\xe9\x00", b"\x0f", b"\x8b", b"\xb8\x01\x02"])
def test_truncated_code_raises(code):
    with pytest.raises(ValueError):
        disasm(code)