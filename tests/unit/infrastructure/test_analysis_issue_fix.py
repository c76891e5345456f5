"""Tests for the per-file fix node and its router."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from migrationflow.domain.entities.incident import Incident, IncidentsByUri
from migrationflow.domain.entities.workflow_messages import ErrorMessage, ModifiedFileMessage
from migrationflow.domain.ports.solution_server import BestHint
from migrationflow.infrastructure.cache import InMemoryCacheWithRevisions
from migrationflow.infrastructure.nodes.analysis_issue_fix import (
    FIX_STEP,
    NO_CHANGE,
    ROUTER_STEP,
    SUMMARIZE_STEP,
    AnalysisIssueFix,
    parse_analysis_fix_response,
)

REASONING = "I need to add the `smallrye-reactive-messaging-jms` extension to the `pom.xml` file."

POM = """<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.example</groupId>
  <artifactId>my-app</artifactId>
  <version>1.0.0</version>
</project>"""


def apply(state: dict, update: dict) -> dict:
    """Merge a node update the way the graph does (results are appended)."""
    merged = {**state, **update}
    merged["output_all_responses"] = [
        *(state.get("output_all_responses") or []),
        *(update.get("output_all_responses") or []),
    ]
    return merged


class TestParseAnalysisFixResponse:
    """Parsing Reasoning / Updated File / Additional Information responses."""

    def test_partial_response(self):
        """Missing additional information is empty."""
        response = f"\n# Reasoning\n{REASONING}\n# Updated File\n```xml\n{POM}\n```"
        parsed = parse_analysis_fix_response(response)
        assert parsed.reasoning == REASONING
        assert parsed.updated_file == POM
        assert parsed.additional_info == ""

    def test_full_response(self):
        response = f"\n# Reasoning\n{REASONING}\n# Updated File\n```xml\n{POM}\n```\n# Additional Information\n{REASONING}\n"
        parsed = parse_analysis_fix_response(response)
        assert parsed.reasoning == REASONING
        assert parsed.updated_file == POM
        assert parsed.additional_info == REASONING

    def test_random_newlines(self):
        """Blank lines are trimmed around sections but kept inside code."""
        spaced_pom = POM.replace("\n  <groupId>", "\n\n  <groupId>")
        response = (
            f"\n# Reasoning\n\n\n{REASONING}\n\n\n# Updated File\n\n```xml\n\n\n{spaced_pom}\n\n\n\n```\n\n"
            f"# Additional Information\n\n\n\n\n{REASONING}\n"
        )
        parsed = parse_analysis_fix_response(response)
        assert parsed.reasoning == REASONING
        assert parsed.updated_file == spaced_pom
        assert parsed.additional_info == REASONING

    def test_empty_sections(self):
        response = "\n# Reasoning\n\n# Updated File\n\n```xml\n\n```\n\n# Additional Information\n\n"
        parsed = parse_analysis_fix_response(response)
        assert parsed.reasoning == ""
        assert parsed.updated_file == ""
        assert parsed.additional_info == ""

    def test_text_outside_code_block(self):
        """Commentary around the code block is not part of the file."""
        response = (
            f"\n# Reasoning\n{REASONING}\n# Updated File\n\nThis text is not part of the code block.\n"
            f"```xml\n{POM}\n```\n\nThis text is not part of the code block.\n\n"
            f"# Additional Information\n{REASONING}\n"
        )
        parsed = parse_analysis_fix_response(response)
        assert parsed.updated_file == POM
        assert parsed.additional_info == REASONING

    def test_code_block_containing_separator(self):
        """Escaped fences inside the code survive."""
        code = 'import os\n\n\\`\\`\\`\nThis is an escaped comment\n\\`\\`\\`\ndef main():\n  print("Hello, World!")'
        response = (
            f"\n# Reasoning\n{REASONING}\n# Updated File\n\nThis text is not part of the code block.\n"
            f"```py\n{code}\n```\n\nThis text is not part of the code block.\n\n"
            f"# Additional Information\n{REASONING}\n"
        )
        parsed = parse_analysis_fix_response(response)
        assert parsed.updated_file == code
        assert parsed.reasoning == REASONING

    def test_heading_like_lines_in_code(self):
        """Comments in the updated file that look like headings do not end it."""
        code = (
            "/**\n * Reasoning behind this bean\n */\n@ApplicationScoped\npublic class A {\n"
            "    # Additional information\n}"
        )
        response = (
            f"# Reasoning\n{REASONING}\n# Updated File\n```java\n{code}\n```\n"
            "# Additional Information\nNothing else."
        )
        parsed = parse_analysis_fix_response(response)
        assert parsed.updated_file == code
        assert parsed.reasoning == REASONING
        assert parsed.additional_info == "Nothing else."


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "A.java").write_text("class A {}")
    (tmp_path / "B.java").write_text("class B {}")
    return tmp_path


def _incident(workspace, name, **kwargs) -> Incident:
    return Incident(uri=f"file://{workspace / name}", message=f"fix {name}", line_number=1, **kwargs)


def _node(provider, workspace, solution_server, sink, fs_cache=None) -> AnalysisIssueFix:
    return AnalysisIssueFix(provider, [], fs_cache or InMemoryCacheWithRevisions(), workspace, solution_server, sink)


class TestFixRouter:
    """The router walks the queue in order and aggregates at the end."""

    @pytest.mark.asyncio
    async def test_walks_queue_in_order(self, fake_provider, workspace, solution_server, sink):
        """Results are folded FIFO and aggregated once the queue is drained."""
        fs_cache = InMemoryCacheWithRevisions()
        node = _node(fake_provider(), workspace, solution_server, sink, fs_cache)
        a, b = _incident(workspace, "A.java"), _incident(workspace, "B.java")
        state = {
            "input_incidents_by_uris": [
                IncidentsByUri(uri=a.uri, incidents=[a]),
                IncidentsByUri(uri=b.uri, incidents=[b]),
            ],
            "current_idx": 0,
            "input_all_modified_files": None,
        }

        state = apply(state, await node.fix_analysis_issue_router(state))
        assert state["input_file_uri"] == a.uri
        assert state["input_file_content"] == "class A {}"
        assert state["current_idx"] == 1
        assert AnalysisIssueFix.next_fix_step(state) == FIX_STEP

        state = apply(
            state,
            {
                "output_updated_file": "class A2 {}",
                "output_updated_file_uri": a.uri,
                "output_reasoning": "renamed A",
                "output_additional_info": "update callers of A",
            },
        )
        state = apply(state, await node.fix_analysis_issue_router(state))
        assert state["input_file_uri"] == b.uri
        assert state["output_updated_file"] is None
        assert [r.uri for r in state["output_all_responses"]] == [a.uri]
        assert fs_cache.get(str(workspace / "A.java")) == "class A2 {}"
        solution_server.create_multiple_incidents.assert_awaited_once_with([a])
        solution_server.create_solution.assert_awaited_once()

        state = apply(
            state,
            {"output_updated_file": "class B2 {}", "output_updated_file_uri": b.uri, "output_reasoning": "renamed B"},
        )
        state = apply(state, await node.fix_analysis_issue_router(state))
        assert [r.uri for r in state["output_all_responses"]] == [a.uri, b.uri]
        assert state["input_all_modified_files"] == ["A.java", "B.java"]
        assert state["input_all_reasoning"] == "### A.java\nrenamed A\n\n### B.java\nrenamed B"
        assert state["input_all_additional_info"] == "### A.java\nupdate callers of A"
        assert AnalysisIssueFix.next_fix_step(state) == SUMMARIZE_STEP

        modified = [m.data.path for m in sink.messages if isinstance(m, ModifiedFileMessage)]
        assert modified == [a.uri, b.uri]

    @pytest.mark.asyncio
    async def test_empty_queue_finalizes(self, fake_provider, workspace, solution_server, sink):
        node = _node(fake_provider(), workspace, solution_server, sink)
        state = {"input_incidents_by_uris": [], "current_idx": 0, "input_all_modified_files": None}
        state = apply(state, await node.fix_analysis_issue_router(state))
        assert state["input_all_modified_files"] == []
        assert AnalysisIssueFix.next_fix_step(state) == SUMMARIZE_STEP

    @pytest.mark.asyncio
    async def test_unreadable_file_is_skipped(self, fake_provider, workspace, solution_server, sink):
        """A read failure is reported and the router moves on."""
        node = _node(fake_provider(), workspace, solution_server, sink)
        missing = _incident(workspace, "Missing.java")
        state = {
            "input_incidents_by_uris": [IncidentsByUri(uri=missing.uri, incidents=[missing])],
            "current_idx": 0,
            "input_all_modified_files": None,
        }
        state = apply(state, await node.fix_analysis_issue_router(state))
        assert state["input_file_uri"] is None
        assert AnalysisIssueFix.next_fix_step(state) == ROUTER_STEP
        errors = [m for m in sink.messages if isinstance(m, ErrorMessage)]
        assert errors[0].data.startswith(f"Failed to read {missing.uri} - ")

        state = apply(state, await node.fix_analysis_issue_router(state))
        assert state["input_all_modified_files"] == []
        assert AnalysisIssueFix.next_fix_step(state) == SUMMARIZE_STEP

    @pytest.mark.asyncio
    async def test_cached_content_preferred(self, fake_provider, workspace, solution_server, sink):
        """An earlier edit in this run is read instead of the disk."""
        fs_cache = InMemoryCacheWithRevisions()
        fs_cache.set(str(workspace / "A.java"), "class Edited {}")
        node = _node(fake_provider(), workspace, solution_server, sink, fs_cache)
        a = _incident(workspace, "A.java")
        state = {
            "input_incidents_by_uris": [IncidentsByUri(uri=a.uri, incidents=[a])],
            "current_idx": 0,
            "input_all_modified_files": None,
        }
        update = await node.fix_analysis_issue_router(state)
        assert update["input_file_content"] == "class Edited {}"

    @pytest.mark.asyncio
    async def test_solution_server_failure_is_tolerated(self, fake_provider, workspace, solution_server, sink):
        solution_server.create_multiple_incidents.side_effect = RuntimeError("server down")
        node = _node(fake_provider(), workspace, solution_server, sink)
        a = _incident(workspace, "A.java")
        state = {
            "input_incidents_by_uris": [IncidentsByUri(uri=a.uri, incidents=[a])],
            "current_idx": 1,
            "input_all_modified_files": None,
            "input_file_uri": a.uri,
            "input_file_content": "class A {}",
            "input_incidents": [a],
            "output_updated_file": "class A2 {}",
            "output_updated_file_uri": a.uri,
            "output_reasoning": "renamed",
        }
        update = await node.fix_analysis_issue_router(state)
        assert len(update["output_all_responses"]) == 1
        assert update["input_all_modified_files"] == ["A.java"]


FIX_RESPONSE = "## Reasoning\nSwap javax for jakarta.\n## Updated File\n```java\nimport jakarta.ejb.Stateless;\n```\n"


class TestFixAnalysisIssue:
    """Asking the model for a fix."""

    @pytest.mark.asyncio
    async def test_parses_response(self, fake_provider, workspace, solution_server, sink):
        provider = fake_provider(FIX_RESPONSE)
        node = _node(provider, workspace, solution_server, sink)
        a = _incident(workspace, "A.java")
        update = await node.fix_analysis_issue(
            {
                "input_file_uri": a.uri,
                "input_file_content": "import javax.ejb.Stateless;",
                "input_incidents": [a],
                "migration_hint": "JavaEE to Quarkus",
            }
        )
        assert update["output_reasoning"] == "Swap javax for jakarta."
        assert update["output_updated_file"] == "import jakarta.ejb.Stateless;"
        assert update["output_additional_info"] == ""
        assert update["output_updated_file_uri"] == a.uri
        prompt = provider.calls[0][0][1].content
        assert 'File name: "A.java"' in prompt
        assert "* 1: fix A.java" in prompt

    @pytest.mark.asyncio
    async def test_hints_fetched_once_per_violation(self, fake_provider, workspace, solution_server, sink):
        solution_server.get_best_hint.return_value = BestHint(hint="Use jakarta imports", hint_id=11)
        provider = fake_provider(FIX_RESPONSE)
        node = _node(provider, workspace, solution_server, sink)
        incidents = [
            _incident(workspace, "A.java", ruleset_name="eap8", violation_name="javax"),
            _incident(workspace, "A.java", ruleset_name="eap8", violation_name="javax"),
            _incident(workspace, "A.java"),
        ]
        update = await node.fix_analysis_issue(
            {"input_file_uri": incidents[0].uri, "input_file_content": "x", "input_incidents": incidents}
        )
        solution_server.get_best_hint.assert_awaited_once_with("eap8", "javax")
        assert update["output_hints"] == [11]
        assert "## Hints\n* Use jakarta imports" in provider.calls[0][0][1].content

    @pytest.mark.asyncio
    async def test_nothing_loaded(self, fake_provider, workspace, solution_server, sink):
        provider = fake_provider()
        node = _node(provider, workspace, solution_server, sink)
        update = await node.fix_analysis_issue({"input_file_uri": None})
        assert update["output_updated_file"] is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_model_failure_gives_empty_output(self, fake_provider, workspace, solution_server, sink):
        node = _node(fake_provider(RuntimeError("down")), workspace, solution_server, sink)
        a = _incident(workspace, "A.java")
        update = await node.fix_analysis_issue(
            {"input_file_uri": a.uri, "input_file_content": "x", "input_incidents": [a]}
        )
        assert update["output_updated_file"] is None
        assert update["output_updated_file_uri"] == a.uri


class TestSummaries:
    """Summarizing additional information and history."""

    @pytest.mark.asyncio
    async def test_no_additional_info(self, fake_provider, workspace, solution_server):
        provider = fake_provider()
        node = _node(provider, workspace, solution_server, None)
        update = await node.summarize_additional_information({"input_all_additional_info": ""})
        assert update == {"summarized_additional_info": NO_CHANGE}
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_summarize_additional_info(self, fake_provider, workspace, solution_server, sink):
        """The summary is a thinking step: nothing is emitted."""
        provider = fake_provider("Add quarkus-jms to pom.xml")
        node = _node(provider, workspace, solution_server, sink)
        update = await node.summarize_additional_information(
            {
                "input_all_additional_info": "### A.java\nupdate pom",
                "input_all_reasoning": "### A.java\nrenamed",
                "input_all_modified_files": ["A.java"],
                "migration_hint": "JavaEE to Quarkus",
            }
        )
        assert update == {"summarized_additional_info": "Add quarkus-jms to pom.xml"}
        assert sink.messages == []
        prompt = provider.calls[0][0][1].content
        assert "### List of modified files\nA.java" in prompt
        assert NO_CHANGE in prompt

    @pytest.mark.asyncio
    async def test_history(self, fake_provider, workspace, solution_server):
        node = _node(fake_provider("Renamed A."), workspace, solution_server, None)
        assert await node.summarize_history({"input_all_reasoning": "renamed"}) == {"summarized_history": "Renamed A."}
        assert await node.summarize_history({}) == {"summarized_history": ""}


class TestAddressAdditionalInformation:
    """Tool-augmented follow-up turn."""

    @pytest.mark.asyncio
    async def test_seeds_conversation_once(self, fake_provider, workspace, solution_server):
        node = _node(fake_provider("All done."), workspace, solution_server, None)
        update = await node.address_additional_information({"summarized_additional_info": "Add jms"})
        system, human, response = update["messages"]
        assert isinstance(system, SystemMessage)
        assert human.content == "Here are the notes:\nAdd jms"
        assert response.content == "All done."

    @pytest.mark.asyncio
    async def test_continues_conversation(self, fake_provider, workspace, solution_server):
        provider = fake_provider("Next.")
        node = _node(provider, workspace, solution_server, None)
        history = [SystemMessage(content="s"), HumanMessage(content="h"), AIMessage(content="a")]
        update = await node.address_additional_information({"messages": history})
        assert [m.content for m in update["messages"]] == ["Next."]
        assert provider.calls[0][0] == history

    @pytest.mark.asyncio
    async def test_failure_ends_turn(self, fake_provider, workspace, solution_server):
        node = _node(fake_provider(RuntimeError("down")), workspace, solution_server, None)
        update = await node.address_additional_information({"messages": [HumanMessage(content="h")]})
        assert update["messages"][-1].content == "DONE"
