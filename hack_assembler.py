# coding: utf-8

#---------------------------------------------------------------------------------------
# (C)2023 Robert Woodhead. Creative Commons Attribution License
#---------------------------------------------------------------------------------------

# Usage: hack-assembler [-s] [-z] [-d] {asm input file} [hack output file]
#
# Translates a HACK assembly program into HACK machine code, one 16 character
# line of 0s and 1s per instruction. If no output file is named, the results
# go into a .hack file with the same name as the .asm file; if -s switch is
# used, some handy symbol tables are produced.
#
# Assembly takes three passes over the program:
#
#   1. (LABEL) declarations get the address of the next real instruction.
#   2. @symbols that are still unknown become variables, allocated upwards
#      from address 16, in the order they are first seen. Decimal literals
#      are entered as themselves.
#   3. Every @ and C instruction is encoded; labels produce nothing.
#
# Whitespace is insignificant everywhere, and // starts a comment.
#
# Decimal literals above 32767 are an error. The -z switch instead assembles
# them (and any literal longer than 5 digits) as @0, which is what some older
# assemblers quietly did.

import os
import sys
import shutil
import argparse
from types import MappingProxyType
from itertools import permutations
from typing import List, Dict, Tuple, Iterable, Mapping, NamedTuple, Optional, Union

Values = Dict[str, int]     # Name:Values pairs, for example in symbol tables
Line = Tuple[int, str, str] # Line number, line, original (unmunged) line
Notice = Tuple[Line, str]   # A warning and the line that caused it

DEBUG = False               # Debug output flag
MAXRAM = 16384              # Limit of ram space
MAXROM = 32768              # Limit of rom space
MAXADDRESS = 32767          # Largest value an @-instruction can hold
FIRSTVARIABLE = 16          # Locations 0-15 are reserved, so 16 is the first available

NOLINE: Line = (0, '', '')

# Literal overflow policies.

OVERFLOW_ERROR = 'error'
OVERFLOW_ZERO = 'zero'

# Various sets used in parsing.

SYMBOLCHARS = set('abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.$:')
DECIMALCHARS = set('0123456789')

# The predefined symbols. Every symbol table starts out as a copy of these.

PREDEFINED: Values = {

    'R0': 0,
    'R1': 1,
    'R2': 2,
    'R3': 3,
    'R4': 4,
    'R5': 5,
    'R6': 6,
    'R7': 7,
    'R8': 8,
    'R9': 9,
    'R10': 10,
    'R11': 11,
    'R12': 12,
    'R13': 13,
    'R14': 14,
    'R15': 15,

    'SP': 0,
    'LCL': 1,
    'ARG': 2,
    'THIS': 3,
    'THAT': 4,

    'SCREEN': 16384,
    'KBD': 24576,

}

# Constants used in building instructions.

# C instruction template.

CINSTR = 0b1110000000000000

# The comp operand that reads memory instead of the A register. Seeing it in
# a comp sets the a-bit; the table below only lists the A register forms.

MEMORY = 'M'
REGISTER = 'A'
ABIT = 0b0001000000000000

# Opcodes for jmps.

JMPS: Values = {

    'null': 0b000,
    'JGT':  0b001,
    'JEQ':  0b010,
    'JGE':  0b011,
    'JLT':  0b100,
    'JNE':  0b101,
    'JLE':  0b110,
    'JMP':  0b111

}

# Opcodes for destinations.

DESTS: Values = {

    'null': 0b000,
    'M':    0b001,
    'D':    0b010,
    'MD':   0b011,
    'A':    0b100,
    'AM':   0b101,
    'AD':   0b110,
    'AMD':  0b111,

}

# Variants added so destinations can be specified in any order.

DESTS.update({''.join(p): code for d, code in list(DESTS.items()) if d != 'null' for p in permutations(d)})

# Opcodes for comps (register forms only).

COMPS: Values = {

    '0':    0b101010,
    '1':    0b111111,
    '-1':   0b111010,
    'D':    0b001100,
    'A':    0b110000,
    '!D':   0b001101,
    '!A':   0b110001,
    '-D':   0b001111,
    '-A':   0b110011,
    'D+1':  0b011111,
    'A+1':  0b110111,
    'D-1':  0b001110,
    'A-1':  0b110010,
    'D+A':  0b000010,
    'D-A':  0b010011,
    'A-D':  0b000111,
    'D&A':  0b000000,
    'D|A':  0b010101,

    # Synonyms.

    'A+D':  0b000010,
    'A&D':  0b000000,
    'A|D':  0b010101,

}

# The tables are fixed by the hardware; nothing may change them once built.

JMPS: Mapping[str, int] = MappingProxyType(JMPS)
DESTS: Mapping[str, int] = MappingProxyType(DESTS)
COMPS: Mapping[str, int] = MappingProxyType(COMPS)

FIELDS = {'dest': 'destination', 'comp': 'alu operation', 'jump': 'jump'}

# Errors. All of them are fatal; the driver fills in the line once it knows it.

class AssemblerError(Exception):

    def __init__(self, msg: str, line: Optional[Line] = None):
        super().__init__(msg)
        self.msg = msg
        self.line = line

    def __str__(self):
        if self.line is None:
            return self.msg
        return f'line {self.line[0]}: {self.msg}'

class UnknownMnemonic(AssemblerError):

    def __init__(self, field: str, mnemonic: str, line: Optional[Line] = None):
        super().__init__(f'Unknown {FIELDS[field]} [{mnemonic}]', line)
        self.field = field
        self.mnemonic = mnemonic

class AddressOverflow(AssemblerError):

    def __init__(self, value: int, line: Optional[Line] = None):
        super().__init__(f'Address {value} out of 0..{MAXADDRESS} range', line)
        self.value = value

class BadSymbol(AssemblerError):

    def __init__(self, symbol: str, line: Optional[Line] = None):
        super().__init__('Empty symbol' if symbol == '' else f'Badly formed symbol [{symbol}]', line)
        self.symbol = symbol

# The three kinds of instruction. Each one remembers the line it came from.

class AddressRef(NamedTuple):
    symbol: str
    line: Line = NOLINE

class Label(NamedTuple):
    symbol: str
    line: Line = NOLINE

class Computation(NamedTuple):
    dest: str
    comp: str
    jump: str
    line: Line = NOLINE

Instruction = Union[AddressRef, Label, Computation]

# Determine if a string meets the criteria for a symbol.

def is_symbol(s:str) -> bool:

    if s == '':
        return False
    elif s[0] in DECIMALCHARS:
        return False
    else:
        for c in s:
            if c not in SYMBOLCHARS:
                return False

    return True

# Determine if a string is a plain decimal literal.

def is_decimal(s: str) -> bool:

    return s != '' and all(c in DECIMALCHARS for c in s)

# Evaluate a decimal literal under the given overflow policy.

def literal(s: str, overflow: str = OVERFLOW_ERROR, line: Optional[Line] = None) -> int:

    match overflow:

        case 'error':
            value = int(s)
            if value > MAXADDRESS:
                raise AddressOverflow(value, line)
            return value

        case 'zero':
            if len(s) > 5:
                return 0
            value = int(s)
            return value if value <= MAXADDRESS else 0

        case _:
            raise ValueError(f'Unknown overflow policy [{overflow}]')

# Kill all the whitespace (evil trick) and the comment, if any.

def normalize(s: str) -> str:

    return ''.join(s.split()).split('//')[0]

# Number and normalize the lines, dropping the blank ones.

def source_lines(text: Iterable[str]) -> List[Line]:

    lines = [(i+1, normalize(l), l) for i, l in enumerate(text)]

    return [l for l in lines if l[1] != '']

# Classify a line and pull out its fields.

def instruction(line: Line) -> Instruction:

    o = line[1]

    if '@' in o:                        # @-op
        return AddressRef(o[o.find('@')+1:], line)
    elif '(' in o and ')' in o:         # (LABEL)
        return Label(o[o.find('(')+1:o.find(')')], line)
    else:                               # dest=comp;jump
        dest = 'null'
        jump = 'null'
        if '=' in o:
            dest, o = o.split('=', 1)
        if ';' in o:
            o, jump = o.split(';', 1)
        return Computation(dest, o, jump, line)

def parse(text: Iterable[str]) -> List[Instruction]:

    return [instruction(l) for l in source_lines(text)]

# The symbol table. Predefined symbols are present from the start; labels and
# variables are added by the first two passes. Callers check contains() before
# insert(), so the first definition of a symbol is the one that sticks.

class SymbolTable:

    def __init__(self):
        self.symbols: Values = dict(PREDEFINED)
        self.labels: List[str] = []
        self.variables: List[str] = []

    def contains(self, name: str) -> bool:
        return name in self.symbols

    def get(self, name: str) -> int:
        return self.symbols[name]

    def insert(self, name: str, address: int):
        self.symbols[name] = address

# Encode an @-instruction.

def encode_address(address: int) -> str:

    if not 0 <= address <= MAXADDRESS:
        raise AddressOverflow(address)

    return '{:016b}'.format(address)

# Encode a C-instruction. The M forms of comp share the A form's opcode and
# set the a-bit.

def encode_computation(dest: str, comp: str, jump: str) -> str:

    c = CINSTR

    if MEMORY in comp:
        c += ABIT

    oc = comp.replace(MEMORY, REGISTER)

    if oc in COMPS:
        c += COMPS[oc] << 6
    else:
        raise UnknownMnemonic('comp', comp)
    if dest in DESTS:
        c += DESTS[dest] << 3
    else:
        raise UnknownMnemonic('dest', dest)
    if jump in JMPS:
        c += JMPS[jump]
    else:
        raise UnknownMnemonic('jump', jump)

    return '{:016b}'.format(c)

def debug_dump(ops: List[Instruction], title: str, debug: bool = False):

    if debug or DEBUG:
        print(title)
        for o in ops:
            print(o)
        print()

# Pass 1: give each (LABEL) the address of the next @ or C instruction.
# Returns the program length.

def resolve_labels(ops: List[Instruction], symbols: SymbolTable, notices: List[Notice]) -> int:

    pc = 0  # Program counter

    for o in ops:
        match o:

            case Label(symbol=sym):
                if not is_symbol(sym):
                    raise BadSymbol(sym, o.line)
                elif symbols.contains(sym):
                    notices.append((o.line, f'Symbol [{sym}] previously defined; first definition kept'))
                else:
                    symbols.insert(sym, pc)
                    symbols.labels.append(sym)

            case _:
                pc += 1

    if pc > MAXROM:
        raise AssemblerError(f'Program too large ({pc} instructions)', ops[-1].line)

    return pc

# Pass 2: enter unknown @-symbols. Literals stand for themselves, anything
# else is a new variable. Returns the next free RAM address.

def resolve_variables(ops: List[Instruction], symbols: SymbolTable, notices: List[Notice], overflow: str = OVERFLOW_ERROR) -> int:

    ram = FIRSTVARIABLE

    for o in ops:
        match o:

            case AddressRef(symbol=sym) if not symbols.contains(sym):
                if is_decimal(sym):
                    symbols.insert(sym, literal(sym, overflow, o.line))
                elif is_symbol(sym):
                    symbols.insert(sym, ram)
                    symbols.variables.append(sym)
                    if ram >= MAXRAM:
                        notices.append((o.line, f'Variable [{sym}] allocated at {ram}, past the end of RAM'))
                    ram += 1
                else:
                    raise BadSymbol(sym, o.line)

    return ram

# Pass 3: generate the code. By now every @-symbol is in the table.

def emit(ops: List[Instruction], symbols: SymbolTable) -> List[str]:

    prog: List[str] = []

    for o in ops:
        try:
            match o:

                case AddressRef(symbol=sym):
                    prog.append(encode_address(symbols.get(sym)))

                case Computation(dest=od, comp=oc, jump=oj):
                    prog.append(encode_computation(od, oc, oj))

                case Label():
                    pass

        except AssemblerError as oops:
            oops.line = o.line
            raise

    return prog

# Assemble a program (a string, or an iterable of lines) into a list of
# binary strings. Pass in a SymbolTable and/or notices list to look at them
# afterwards; otherwise fresh ones are used. debug dumps the instructions
# before each pass, as does setting DEBUG.

def assemble(source: Union[str, Iterable[str]], overflow: str = OVERFLOW_ERROR,
             symbols: Optional[SymbolTable] = None, notices: Optional[List[Notice]] = None, debug: bool = False) -> List[str]:

    if isinstance(source, str):
        source = source.splitlines()
    if symbols is None:
        symbols = SymbolTable()
    if notices is None:
        notices = []

    ops = parse(source)

    debug_dump(ops, 'Pass 1', debug)
    resolve_labels(ops, symbols, notices)

    debug_dump(ops, 'Pass 2', debug)
    resolve_variables(ops, symbols, notices, overflow)

    debug_dump(ops, 'Pass 3', debug)
    return emit(ops, symbols)

# Print out a segment of the symbol table in a nicely formatted way.

def print_symbols(symbols: Values, valid: List[str], title: str, byname: bool):

    # .sort() helper functions, permits sorting by value or name (case-insensitive).

    def byValues(s: str):
        return symbols[s]

    def byNames(s: str):
        return s.upper()

    # Filter out the desired symbols.

    valid_symbols = [s for s in symbols.keys() if s in valid]

    if not valid_symbols:
        return

    if byname:
        valid_symbols.sort(key=byNames)
    else:
        valid_symbols.sort(key=byValues)

    # How wide is a column, and how many fit in a line?

    num_symbols = len(valid_symbols)
    max_width = max([len(s) for s in valid_symbols])

    ruler = '-'*max_width + ' -----'
    separator = ' | '

    num_cols = min([(shutil.get_terminal_size().columns - len(separator)) // (len(ruler) + len(separator)), num_symbols])

    if num_cols==0:
        num_cols = 1

    num_rows = (num_symbols + num_cols - 1) // num_cols
    num_cols = (num_symbols + num_rows - 1) // num_rows

    formatted_symbols = [f'{s:{max_width}} {symbols[s]:5}' for s in valid_symbols]

    print(title + (' (by name)' if byname else ' (by value)'))
    print(separator.join([ruler for i in range(0, num_cols)]))

    # Symbols run down the columns rather than across the rows; the final
    # column can come up short.

    for row in range(0, num_rows):
        print(separator.join([formatted_symbols[num_rows * col + row] if num_rows * col + row < num_symbols else '' for col in range(0, num_cols)]))

    print()

def print_notices(kind: str, notices: List[Notice]):

    for line, msg in notices:
        print(f'{kind} in line {line[0]}: {msg}')
        print('\t' + line[2].strip('\n'))

# Assemble fname into oname, report on how it went, and return the exit code.

def avengers_assemble(fname: str, oname: str, print_symbol_table: bool = False, overflow: str = OVERFLOW_ERROR, debug: bool = False) -> int:

    symbols = SymbolTable()
    notices: List[Notice] = []

    with open(fname) as asmfile:
        lines = asmfile.readlines()

    try:
        prog = assemble(lines, overflow, symbols, notices, debug)
    except AssemblerError as oops:
        print_notices('Error', [(oops.line or NOLINE, oops.msg)])
        print_notices('Warning', notices)
        print(f'Assembly aborted -- 1 error(s) and {len(notices)} warning(s) detected.')
        return 1

    print_notices('Warning', notices)

    if print_symbol_table:
        print()
        print_symbols(symbols.symbols, list(PREDEFINED), 'Predefined Symbols', byname=True)
        print_symbols(symbols.symbols, symbols.labels, 'Branch Addresses', byname=True)
        print_symbols(symbols.symbols, symbols.labels, 'Branch Addresses', byname=False)
        print_symbols(symbols.symbols, symbols.variables, 'Variables', byname=True)
        print_symbols(symbols.symbols, symbols.variables, 'Variables', byname=False)

    if debug or DEBUG:
        for p in prog:
            print(p + '\t' + str(int('0b'+p, 0)))

    with open(oname, 'w') as hackfile:
        for p in prog:
            hackfile.write(p + '\n')

    pc = len(prog)
    ram = FIRSTVARIABLE + len(symbols.variables)

    print(f'Program length: {pc} (of {MAXROM}, {int(pc*100/MAXROM)}%), RAM usage: {ram} (of {MAXRAM}, {int(ram*100/MAXRAM)}%)')
    print('Assembly successful - results written to ' + oname)

    return 0

# Main level.

def main(argv: Optional[List[str]] = None) -> int:

    parser = argparse.ArgumentParser(
                    prog = 'hack-assembler',
                    description = 'Assembles HACK programs',
                    epilog = 'Without an output file, results are stored in a .hack file with the same name as the .asm file')

    parser.add_argument('filename', help='The HACK .asm file to be assembled')
    parser.add_argument('output', nargs='?', help='The .hack file to write')
    parser.add_argument('-s', '--symbols', action='store_true', required=False, help='prints helpful symbol tables')
    parser.add_argument('-z', '--zero-overflow', action='store_true', required=False, help='assemble out of range decimal literals as @0 instead of failing')
    parser.add_argument('-d', '--debug', action='store_true', required=False, help='dumps the instructions before each pass')

    args = parser.parse_args(argv)

    fname = args.filename
    oname = args.output

    if oname is None:
        if not fname.endswith('.asm'):
            print('Error: Input filename must end in .asm')
            return 1
        oname = fname[:-4] + '.hack'

    if not os.path.isfile(fname):
        print(f'Error: Input file [{fname}] does not exist')
        return 1

    return avengers_assemble(fname, oname, args.symbols, OVERFLOW_ZERO if args.zero_overflow else OVERFLOW_ERROR, args.debug)

if __name__ == '__main__':

    sys.exit(main())
