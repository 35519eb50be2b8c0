import pytest

from contract_bench.harness.instructions import Counter, Regular, body, body_counted, body_repeated
from contract_bench.wasm import instruction_count
from contract_bench.wasm.structures import DROP, END, NOP, Opcode, call, i32_const


def test_body_appends_end():
    result = body([NOP])
    assert result.instructions == [NOP, END]
    assert body([]).instructions == [END]


@pytest.mark.parametrize('repetitions', [0, 1, 7])
def test_body_repeated_length(repetitions):
    sequence = [i32_const(4), i32_const(0), call(0)]
    result = body_repeated(repetitions, sequence)
    assert instruction_count(result) == repetitions * len(sequence) + 1
    assert result.instructions[-1] == END
    assert result.instructions[:len(sequence)] == (sequence if repetitions else [END])


def test_body_counted_advances_counters():
    counter = Counter(offset=16, increment_by=32)
    result = body_counted(3, [counter, Regular(call(0)), Regular(DROP)])

    operands = [i.operand for i in result.instructions if i.opcode == Opcode.I32_CONST]
    assert operands == [16, 48, 80]
    assert len(result.instructions) == 3 * 3 + 1
    # The cursor is left one step past the last emission
    assert counter.offset == 112


def test_negative_repetitions_rejected():
    with pytest.raises(ValueError):
        body_repeated(-1, [NOP])
    with pytest.raises(ValueError):
        body_counted(-1, [Regular(NOP)])
