"""
WebAssembly binary codec.

Supports the subset of the MVP format used by benchmark modules:
- type, import, function, export, code and data sections
- imported linear memory and imported host functions
- control, constant and call instructions
"""

from .structures import *
from .encoder import encode_module
from .decoder import decode_module, count_call_sites, instruction_count

__all__ = [
    'encode_module', 'decode_module', 'count_call_sites', 'instruction_count',
    'Module', 'FuncBody', 'FuncType', 'Import', 'Export', 'DataEntry', 'Limits',
    'Instruction', 'Opcode', 'ValueType', 'ExternalKind', 'WasmSectionId',
]
