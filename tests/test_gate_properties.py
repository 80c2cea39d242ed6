"""
Property-based tests for the Checkpoint Gate module.
"""

from io import StringIO

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.gate import CheckpointGate
from secure_bootstrap.i18n import get_message


@st.composite
def answer_strategy(draw) -> str:
    """Generate single-line answers that are not exactly 'yes'."""
    answer = draw(st.text(
        alphabet=st.characters(blacklist_characters="\r\n", blacklist_categories=("Cs",)),
        max_size=20,
    ))
    assume(answer != "yes")
    return answer


class TestGateFailClosedProperty:
    """
    Property-based tests for checkpoint consent.

    **Feature: secure-bootstrap, Property 9: Only the exact token 'yes' is consent**
    """

    @given(answer=answer_strategy())
    @settings(max_examples=100)
    def test_anything_but_yes_declines(self, answer: str) -> None:
        """
        Property 9: Only the exact token 'yes' is consent.

        *For any* answer line other than 'yes', the gate SHALL decline.

        **Feature: secure-bootstrap, Property 9: Only the exact token 'yes' is consent**
        """
        output = StringIO()
        gate = CheckpointGate(
            input_stream=StringIO(answer + "\n"),
            output_stream=output,
            interactive=True,
        )

        assert gate.confirm("Proceed?") is False
        assert get_message("gate.aborted", "en") in output.getvalue()

    @given(line_ending=st.sampled_from(["\n", "\r\n", ""]))
    @settings(max_examples=10)
    def test_yes_confirms(self, line_ending: str) -> None:
        """
        Property 9b: 'yes' confirms regardless of line ending.

        **Feature: secure-bootstrap, Property 9: Only the exact token 'yes' is consent**
        """
        gate = CheckpointGate(
            input_stream=StringIO("yes" + line_ending),
            output_stream=StringIO(),
            interactive=True,
        )
        assert gate.confirm("Proceed?") is True

    def test_end_of_input_declines(self) -> None:
        gate = CheckpointGate(input_stream=StringIO(""), output_stream=StringIO(), interactive=True)
        assert gate.confirm("Proceed?") is False

    def test_non_tty_input_declines_without_prompting(self) -> None:
        """A StringIO is not a terminal, so the gate must not read from it."""
        source = StringIO("yes\n")
        output = StringIO()
        logger = AuditLogger(output_stream=StringIO())
        gate = CheckpointGate(input_stream=source, output_stream=output, logger=logger)

        assert gate.is_interactive() is False
        assert gate.confirm("Proceed?") is False
        assert source.tell() == 0
        assert output.getvalue() == ""
        assert logger.entries[-1].data["checkpoint"] == "Proceed?"

    @given(answer=st.text(max_size=10))
    @settings(max_examples=25)
    def test_assume_yes_never_reads(self, answer: str) -> None:
        """
        Property 9c: assume_yes passes without consuming input.

        **Feature: secure-bootstrap, Property 9: Only the exact token 'yes' is consent**
        """
        source = StringIO(answer)
        logger = AuditLogger(output_stream=StringIO())
        gate = CheckpointGate(input_stream=source, output_stream=StringIO(), assume_yes=True, logger=logger)

        assert gate.confirm("Proceed?") is True
        assert source.tell() == 0
        assert logger.entries[-1].message == get_message("gate.assumed", "en")


class TestGatePrompt:
    """Prompt layout."""

    def test_info_is_printed_before_question(self) -> None:
        output = StringIO()
        gate = CheckpointGate(input_stream=StringIO("yes\n"), output_stream=output, interactive=True)

        gate.confirm("Question?", info="Instructions")

        text = output.getvalue()
        assert text.index("Instructions") < text.index("Question?")
        assert text.endswith(get_message("gate.prompt", "en"))

    def test_german_prompt(self) -> None:
        output = StringIO()
        gate = CheckpointGate(
            input_stream=StringIO("ja\n"), output_stream=output, interactive=True, language="de"
        )

        assert gate.confirm("Weiter?") is False
        assert get_message("gate.prompt", "de") in output.getvalue()
        assert get_message("gate.aborted", "de") in output.getvalue()
