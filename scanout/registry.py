"""Registry of the available output modules."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO, Callable, Optional, Sequence, Union

from .csv_output import CsvOutput, open_csv_output
from .json_output import JsonOutput, open_json_output

Output = Union[CsvOutput, JsonOutput]
Opener = Callable[[Optional[str], Sequence[str], str], Output]


@dataclass(frozen=True)
class OutputModuleInfo:
    """Description of an output module and how to open it."""

    name: str
    opener: Opener
    supports_dynamic_output: bool = False
    filter_duplicates: bool = False
    filter_unsuccessful: bool = False
    update_interval: int = 0
    helptext: str = ""

    def open(self, filename: Optional[str], fields: Sequence[str]) -> Output:
        """Open this module's output on ``filename`` for ``fields``."""
        return self.opener(filename, fields, self.name)


def _open_json(filename: Optional[str], fields: Sequence[str], module_name: str) -> Output:
    return open_json_output(filename)


_CSV = OutputModuleInfo(
    name="csv",
    opener=open_csv_output,
    supports_dynamic_output=False,
    helptext=(
        "Outputs one or more output fields as a comma-delimited file. By default, the "
        "probe module does not filter out duplicates or limit to successful fields, "
        "but rather includes all received packets. Fields can be controlled by "
        "setting --output-fields. Filtering out failures and duplicate packets can "
        "be achieved by setting an --output-filter."
    ),
)

_JSON = OutputModuleInfo(
    name="json",
    opener=_open_json,
    supports_dynamic_output=True,
    helptext=(
        "Outputs one or more output fields as a json valid file. By default, the \n"
        "probe module does not filter out duplicates or limit to successful fields, \n"
        "but rather includes all received packets. Fields can be controlled by \n"
        "setting --output-fields. Filtering out failures and duplicate packets can \n"
        "be achieved by setting an --output-filter."
    ),
)

OUTPUT_MODULES: tuple[OutputModuleInfo, ...] = (_CSV, _JSON)


def get_output_module_by_name(name: str) -> Optional[OutputModuleInfo]:
    """Return the output module called ``name``, or None if there is none."""
    return next((module for module in OUTPUT_MODULES if module.name == name), None)


def print_output_modules(stream: Optional[IO[str]] = None) -> None:
    """Write the name of every output module, one per line."""
    target = sys.stdout if stream is None else stream
    for module in OUTPUT_MODULES:
        target.write(module.name + "\n")