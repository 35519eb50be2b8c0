"""
Configuration handling for the contract benchmark harness.

`Config` is the serializable set of knobs (schedule limits, rent model,
currency and batching parameters). `HostConfig` is the capability object
derived from it that every harness and runtime operation receives
explicitly: hashing, balance width, account derivation.
"""

from dataclasses import dataclass, field, fields as dataclass_fields, asdict
from typing import Any, Callable, Dict, Optional
import json
from pathlib import Path

from .io.scale import encode_str, encode_u32, encode_u128
from .utils.hashing import blake2_256, get_hasher, hash_of_u32


# Weight::max_value(): the gas ceiling used for every measured dispatch
MAX_WEIGHT = (1 << 64) - 1

# Size of a linear memory page
PAGE_SIZE = 64 * 1024

# Versions of the rent formula the lifecycle driver knows how to size
# endowments for. Bump when RentParameters semantics change.
SUPPORTED_RENT_VERSIONS = (1,)


def _to_snake(key: str) -> str:
    return ''.join(
        f'_{c.lower()}' if c.isupper() else c
        for c in key
    ).lstrip('_')


def _to_camel(key: str) -> str:
    return ''.join(
        word.capitalize() if i > 0 else word
        for i, word in enumerate(key.split('_'))
    )


def _filtered(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert camelCase keys and drop everything that is not a field of `cls`."""
    valid_fields = {f.name for f in dataclass_fields(cls)}
    converted = {_to_snake(k): v for k, v in data.items()}
    return {k: v for k, v in converted.items() if k in valid_fields}


def _camelized(data: Any) -> Any:
    if isinstance(data, dict):
        return {_to_camel(k): _camelized(v) for k, v in data.items()}
    return data


@dataclass
class Schedule:
    """Limits the contracts module enforces on code and host function arguments."""
    version: int = 0
    max_memory_pages: int = 16
    max_code_size: int = 512 * 1024
    max_event_topics: int = 4
    max_subject_len: int = 32

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schedule':
        return cls(**_filtered(cls, data))


@dataclass
class RentParameters:
    """
    Fee-model constants of the surrounding runtime.

    The rent-bearing endowment is derived from these values, so they are
    versioned: a change of semantics must come with a new `version`.
    """
    version: int = 1
    tombstone_deposit: int = 16
    rent_byte_fee: int = 4
    rent_deposit_offset: int = 10_000
    storage_size_offset: int = 8
    surcharge_reward: int = 150
    signed_claim_handicap: int = 2

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RentParameters':
        return cls(**_filtered(cls, data))


@dataclass
class Config:
    """Configuration options for the benchmark harness."""

    # Host capabilities
    hashing: str = 'blake2_256'
    existential_deposit: int = 1
    max_value_size: int = 16 * 1024
    max_depth: int = 32
    weight_to_fee: int = 1
    random_seed: str = 'contract-bench'

    # Batching of API benchmarks
    api_benchmark_batch_size: int = 100
    api_benchmark_batches: int = 20

    # Runner defaults
    steps: int = 10
    repeat: int = 1

    schedule: Schedule = field(default_factory=Schedule)
    rent: RentParameters = field(default_factory=RentParameters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a config from a (camelCase or snake_case) mapping."""
        filtered = _filtered(cls, data)
        if isinstance(filtered.get('schedule'), dict):
            filtered['schedule'] = Schedule.from_dict(filtered['schedule'])
        if isinstance(filtered.get('rent'), dict):
            filtered['rent'] = RentParameters.from_dict(filtered['rent'])
        return cls(**filtered)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> 'Config':
        """Load configuration from a JSON file."""
        if path is None:
            path = Path(__file__).parent / 'config.json'

        if not path.exists():
            return cls()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save(self, path: Path) -> None:
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(_camelized(self.to_dict()), f, indent=2)


class HostConfig:
    """
    Capability set of the host the contracts run on.

    Passed by reference into the module builder, the lifecycle driver and
    the runtime so none of them depend on hidden globals.

    Attributes:
        config: The configuration this host was derived from
        hash: Hash function used for code hashes, addresses and keys
        balance_bits: Width of the balance type
        account_id_len: Length of an encoded account id
    """

    balance_bits = 128
    account_id_len = 32

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.hash: Callable[[bytes], bytes] = get_hasher(self.config.hashing)
        # Contract addresses are hashes, so they must be as wide as account ids
        if self.hash_len != self.account_id_len:
            raise ValueError(
                f"Hasher '{self.config.hashing}' yields {self.hash_len} byte hashes, "
                f"account ids are {self.account_id_len} bytes"
            )

    @property
    def schedule(self) -> Schedule:
        return self.config.schedule

    @property
    def rent(self) -> RentParameters:
        return self.config.rent

    @property
    def hash_len(self) -> int:
        return len(self.hash(b''))

    @property
    def max_balance(self) -> int:
        return (1 << self.balance_bits) - 1

    def hash_of(self, value: int) -> bytes:
        """Hash of a SCALE encoded u32."""
        return hash_of_u32(self.hash, value)

    def account(self, name: str, index: int, seed: int = 0) -> bytes:
        """Deterministic account id for a (name, index, seed) triple."""
        return blake2_256(encode_str(name) + encode_u32(index) + encode_u32(seed))

    def encode_balance(self, value: int) -> bytes:
        return encode_u128(value)
