"""Build the gnokey commands run by each profiler worker."""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import assert_never


GAS_FEE = 10000000
GAS_WANTED = 800000
MAX_PACKAGE_LENGTH = 20
DEFAULT_FUNCTION = "Main"
BALANCE_QUERY = "gnokey query bank/balances/g1jg8mtutu9khhfwc4nxmuhcpftf0pajdhfvsqf5"
PACKAGE_CHARSET = "abcdefghijklmnopqrstuvwxyz"


class Mode(str, Enum):
    ADDPKG = "addpkg"
    CALL = "call"
    ADDPKG_CALL = "addpkg+call"
    BALANCE_QUERY = "balanceQuery"
    QRENDER = "qrender"


class Operation(str, Enum):
    """A single gnokey invocation. Composite modes expand into several."""

    ADDPKG = "addpkg"
    CALL = "call"
    BALANCE_QUERY = "balanceQuery"
    QRENDER = "qrender"


MODE_OPERATIONS: dict[Mode, tuple[Operation, ...]] = {
    Mode.ADDPKG: (Operation.ADDPKG,),
    Mode.CALL: (Operation.CALL,),
    Mode.ADDPKG_CALL: (Operation.ADDPKG, Operation.CALL),
    Mode.BALANCE_QUERY: (Operation.BALANCE_QUERY,),
    Mode.QRENDER: (Operation.QRENDER,),
}


@dataclass(frozen=True)
class TaskSettings:
    package_name: str = ""
    function_name: str = ""
    remote: str = "localhost:26657"
    key_name: str = "Dev"
    pkg_dir: str = "."
    chain_id: str = "dev"


@dataclass(frozen=True)
class TaskDescriptor:
    operation: Operation
    package_name: str
    function_name: str
    remote: str
    key_name: str
    pkg_dir: str
    chain_id: str


def random_string(length: int = MAX_PACKAGE_LENGTH, rng: random.Random | None = None) -> str:
    source = rng or random
    return "".join(source.choice(PACKAGE_CHARSET) for _ in range(length))


class TaskGenerator:
    """Produce the descriptors for one worker iteration.

    Every leg of a composite cycle shares one package name. A pinned
    package name is reused forever; otherwise each cycle draws a new one, so
    ``addpkg+call`` registers a fresh realm and then calls into it.

    Instances are not thread-safe; each worker owns its own generator.
    """

    def __init__(self, mode: Mode, settings: TaskSettings, rng: random.Random | None = None) -> None:
        self.mode = Mode(mode)
        self.settings = settings
        self._rng = rng

    def next_cycle(self) -> list[TaskDescriptor]:
        package_name = self.settings.package_name or random_string(rng=self._rng)
        function_name = self.settings.function_name or DEFAULT_FUNCTION
        return [
            TaskDescriptor(
                operation=operation,
                package_name=package_name,
                function_name=function_name,
                remote=self.settings.remote,
                key_name=self.settings.key_name,
                pkg_dir=self.settings.pkg_dir,
                chain_id=self.settings.chain_id,
            )
            for operation in MODE_OPERATIONS[self.mode]
        ]


def _maketx(task: TaskDescriptor, subcommand: str, target: str) -> str:
    return (
        f"gnokey maketx {subcommand} --pkgpath 'gno.land/r/{task.package_name}' {target} "
        f"--gas-fee {GAS_FEE}ugnot --gas-wanted {GAS_WANTED} --broadcast "
        f"--chainid {task.chain_id} --remote {task.remote} --insecure-password-stdin=true {task.key_name}"
    )


def generate_command(task: TaskDescriptor) -> str:
    if not task.package_name:
        task = replace(task, package_name=random_string())
    if not task.function_name:
        task = replace(task, function_name=DEFAULT_FUNCTION)

    operation = Operation(task.operation)
    match operation:
        case Operation.ADDPKG:
            return _maketx(task, "addpkg", f"--pkgdir {task.pkg_dir}")
        case Operation.CALL:
            return _maketx(task, "call", f"--func {task.function_name}")
        case Operation.BALANCE_QUERY:
            return BALANCE_QUERY
        case Operation.QRENDER:
            # TODO: accept qrender arguments instead of always rendering the empty path.
            return f"gnokey query vm/qrender --data '{task.package_name}:' --remote {task.remote}"
        case _:
            assert_never(operation)
