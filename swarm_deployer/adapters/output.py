"""Stream-backed progress output."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import TextIO

from swarm_deployer.application.ports import Output


@dataclass(slots=True)
class StreamOutput(Output):
    stream: TextIO = field(default_factory=lambda: sys.stdout)

    def line(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()
