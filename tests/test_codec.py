import pytest

from contract_bench.io.binary_stream import BinaryStream
from contract_bench.io import scale
from contract_bench.utils.hashing import blake2_128, blake2_256, get_hasher, keccak_256, sha2_256
from contract_bench.wasm import decode_module, encode_module
from contract_bench.wasm.structures import (
    END, ExternalKind, FuncBody, FuncType, Import, Instruction, Limits, Module, Opcode,
    ValueType, to_i32,
)


class TestLeb128:
    @pytest.mark.parametrize('value, encoded', [
        (0, b'\x00'),
        (127, b'\x7f'),
        (128, b'\x80\x01'),
        (624485, b'\xe5\x8e\x26'),
    ])
    def test_unsigned(self, value, encoded):
        stream = BinaryStream()
        stream.write_uleb128(value)
        assert stream.get_data() == encoded
        assert BinaryStream(encoded).read_uleb128() == value

    @pytest.mark.parametrize('value, encoded', [
        (0, b'\x00'),
        (-1, b'\x7f'),
        (63, b'\x3f'),
        (64, b'\xc0\x00'),
        (-64, b'\x40'),
        (-65, b'\xbf\x7f'),
        (-123456, b'\xc0\xbb\x78'),
    ])
    def test_signed(self, value, encoded):
        stream = BinaryStream()
        stream.write_sleb128(value)
        assert stream.get_data() == encoded
        assert BinaryStream(encoded).read_sleb128() == value

    def test_negative_unsigned_rejected(self):
        with pytest.raises(ValueError):
            BinaryStream().write_uleb128(-1)

    def test_truncated_read(self):
        with pytest.raises(ValueError, match='Unexpected end of data'):
            BinaryStream(b'\x80').read_uleb128()

    def test_context_manager_closes_stream(self):
        with BinaryStream(b'\x01\x02') as stream:
            assert stream.read_byte() == 1
        with pytest.raises(ValueError):
            stream.read_byte()


class TestScale:
    @pytest.mark.parametrize('value, encoded', [
        (0, b'\x00'),
        (1, b'\x04'),
        (63, b'\xfc'),
        (64, b'\x01\x01'),
        (16383, b'\xfd\xff'),
        (16384, b'\x02\x00\x01\x00'),
        (1 << 30, b'\x03\x00\x00\x00\x40'),
    ])
    def test_compact(self, value, encoded):
        assert scale.encode_compact(value) == encoded
        assert scale.decode_compact(encoded) == (value, len(encoded))

    def test_compact_negative(self):
        with pytest.raises(ValueError):
            scale.encode_compact(-1)

    def test_fixed_width(self):
        assert scale.encode_u32(1) == b'\x01\x00\x00\x00'
        assert scale.encode_u64(2) == b'\x02' + b'\x00' * 7
        assert scale.encode_u128(3) == b'\x03' + b'\x00' * 15
        assert scale.decode_uint(scale.encode_u128((1 << 128) - 1)) == (1 << 128) - 1
        with pytest.raises(ValueError):
            scale.encode_u128(1 << 128)

    def test_vectors(self):
        assert scale.encode_str('abc') == b'\x0cabc'
        assert scale.encode_vec([b'\x01', b'\x02']) == b'\x08\x01\x02'
        hashes = [bytes([i]) * 32 for i in range(3)]
        assert scale.decode_fixed_vec(scale.encode_vec(hashes), 32) == hashes

    def test_fixed_vec_length_mismatch(self):
        with pytest.raises(ValueError):
            scale.decode_fixed_vec(b'\x08' + b'\x00' * 33, 32)


class TestHashing:
    def test_known_digests(self):
        assert sha2_256(b'').hex().startswith('e3b0c44298fc1c14')
        assert keccak_256(b'').hex() == 'c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470'
        assert blake2_256(b'').hex() == '0e5751c026e543b2e8ab2eb06099daa1d1e5df47778f7787faab45cdf12fe3a8'
        assert len(blake2_128(b'')) == 16

    def test_unknown_hasher(self):
        with pytest.raises(ValueError, match='Unknown hasher'):
            get_hasher('md5')


class TestWasmCodec:
    def _module(self):
        return Module(
            types=[FuncType(), FuncType((ValueType.I32, ValueType.I64), (ValueType.I32,))],
            imports=[
                Import('env', 'memory', ExternalKind.MEMORY, limits=Limits(1, 2)),
                Import('seal0', 'seal_call', ExternalKind.FUNCTION, type_index=1),
            ],
            functions=[0],
            code=[FuncBody(instructions=[
                Instruction(Opcode.I32_CONST, to_i32(0xFFFFFFFF)),
                Instruction(Opcode.I64_CONST, -5),
                Instruction(Opcode.CALL, 0),
                Instruction(Opcode.DROP),
                END,
            ])],
        )

    def test_round_trip(self):
        module = self._module()
        encoded = encode_module(module)
        decoded = decode_module(encoded)
        assert decoded == module
        assert encode_module(decoded) == encoded

    def test_header(self):
        assert encode_module(Module()) == b'\x00asm\x01\x00\x00\x00'

    def test_bad_magic(self):
        with pytest.raises(ValueError, match='magic'):
            decode_module(b'\x00wat\x01\x00\x00\x00')

    def test_unsupported_section(self):
        # Table section
        with pytest.raises(ValueError, match='Unsupported section'):
            decode_module(b'\x00asm\x01\x00\x00\x00\x04\x01\x00')

    def test_function_code_mismatch(self):
        module = self._module()
        module.functions = [0, 0]
        with pytest.raises(ValueError, match='disagree'):
            decode_module(encode_module(module))
