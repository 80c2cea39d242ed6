"""
Checkpoint gate module.

A gate blocks the pipeline until the operator confirms a human-only check
(a second SSH session works, a password was stored). Only the exact token
'yes' counts as consent; any other answer, end of input, or the absence of
an interactive terminal stops the pipeline.
"""

import sys
from typing import Optional, TextIO

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.i18n import get_message


AFFIRMATIVE = "yes"


class CheckpointGate:
    """
    Operator confirmation at reachability checkpoints.

    With assume_yes every gate passes without reading input; the override is
    logged at each gate so the run record shows nobody confirmed it.
    """

    def __init__(
        self,
        input_stream: Optional[TextIO] = None,
        output_stream: Optional[TextIO] = None,
        assume_yes: bool = False,
        interactive: Optional[bool] = None,
        language: str = "en",
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the gate.

        Args:
            input_stream: Where answers are read from (defaults to sys.stdin)
            output_stream: Where prompts are written (defaults to sys.stdout)
            assume_yes: Pass every gate without asking
            interactive: Override terminal detection; None means input_stream.isatty()
            language: Language of prompts
            logger: Optional audit logger
        """
        self._input = input_stream or sys.stdin
        self._output = output_stream or sys.stdout
        self._assume_yes = assume_yes
        self._interactive = interactive
        self._language = language
        self._logger = logger

    @property
    def assume_yes(self) -> bool:
        return self._assume_yes

    def is_interactive(self) -> bool:
        if self._interactive is not None:
            return self._interactive
        isatty = getattr(self._input, "isatty", None)
        return bool(isatty and isatty())

    def confirm(self, message: str, info: Optional[str] = None) -> bool:
        """
        Ask the operator to confirm a checkpoint.

        Args:
            message: The question shown to the operator
            info: Optional instructions printed before the question

        Returns:
            True only if the operator answered exactly 'yes' (or assume_yes is set)
        """
        if self._assume_yes:
            self._log_warn(get_message("gate.assumed", self._language), message)
            return True

        if not self.is_interactive():
            self._log_warn(get_message("gate.non_interactive", self._language), message)
            return False

        if info:
            self._output.write(info + "\n")
        self._output.write(message + "\n")
        self._output.write(get_message("gate.prompt", self._language))
        self._output.flush()

        answer = self._input.readline()
        confirmed = answer.rstrip("\r\n") == AFFIRMATIVE
        if self._logger:
            self._logger.info("gate", "Checkpoint answered", {
                "checkpoint": message,
                "confirmed": confirmed,
            })
        if not confirmed:
            self._output.write(get_message("gate.aborted", self._language) + "\n")
            self._output.flush()
        return confirmed

    def _log_warn(self, text: str, checkpoint: str) -> None:
        if self._logger:
            self._logger.warn("gate", text, {"checkpoint": checkpoint})
