"""Tests for prompt rendering and AgentInvocationFactory."""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import make_definition

from agentforge.agent.invocation import (
    AgentInvocationFactory,
    InvocationOptions,
    compose_user_message,
)
from agentforge.agent.state import ChatMessage, PackedContext, PackedFile
from agentforge.services.template_engine import PromptRenderer, TemplateEngine, merge_variables


def make_factory(template_dir) -> AgentInvocationFactory:
    return AgentInvocationFactory(PromptRenderer(TemplateEngine(template_dir)))


# ── 1. Variables ────────────────────────────────────────────────


def test_merge_variables_is_deep_and_ordered():
    merged = merge_variables(
        {"a": {"x": 1, "y": 1}, "keep": True},
        {"a": {"y": 2}},
        None,
        {"b": 3},
    )
    assert merged == {"a": {"x": 1, "y": 2}, "keep": True, "b": 3}
    assert merge_variables({"a": {"x": 1}}, {"a": 5}) == {"a": 5}
    print("  PASS: deep merge")


def test_builtin_variables():
    renderer = PromptRenderer(TemplateEngine("."))
    definition = make_definition("helper", variables={"focus": "tests"})
    history = [ChatMessage(role="user", content="before")]
    variables = renderer.build_variables(
        definition,
        InvocationOptions(prompt="go", variables={"focus": "docs"}),
        PackedContext(),
        history,
        parent_id="lead",
    )
    assert variables["agent"] == {"id": "helper"}
    assert variables["parent"] == {"id": "lead"}
    assert variables["prompt"] == "go"
    assert variables["history"] == [{"role": "user", "content": "before"}]
    assert variables["focus"] == "docs"
    print("  PASS: builtin variables")


# ── 2. Rendering through the factory ────────────────────────────


def test_inline_prompts_are_rendered(tmp_path):
    factory = make_factory(tmp_path)
    parent = factory.create(make_definition("lead"), InvocationOptions(prompt="plan"))
    definition = make_definition(
        "helper",
        system_prompt=(
            "You are {{ agent.id }}{% if parent %} working for {{ parent.id }}{% endif %}. "
            "Focus: {{ focus }}"
        ),
        variables={"focus": "tests"},
    )
    child = factory.create(
        definition,
        InvocationOptions(prompt="Check {{ focus }}", variables={"focus": "docs"}),
        parent,
    )

    assert child.definition.system_prompt == "You are helper working for lead. Focus: docs"
    assert child.messages[0] == ChatMessage(role="system", content=child.definition.system_prompt)
    assert child.prompt == "Check docs"
    assert (child.depth, child.parent_id) == (1, "lead")
    assert parent.definition.system_prompt == "You are lead."
    print("  PASS: inline rendering")


def test_template_files(tmp_path):
    (tmp_path / "system.j2").write_text("System for {{ agent.id }}", encoding="utf-8")
    (tmp_path / "review.j2").write_text("Review {{ prompt }} for {{ agent.id }}", encoding="utf-8")
    factory = make_factory(tmp_path)

    definition = make_definition(
        "reviewer",
        system_prompt_template="system.j2",
        user_prompt_template="review.j2",
    )
    invocation = factory.create(definition, InvocationOptions(prompt="the diff"))
    assert invocation.definition.system_prompt == "System for reviewer"
    assert invocation.prompt == "Review the diff for reviewer"

    override = factory.create(
        make_definition("reviewer"),
        InvocationOptions(prompt="x", prompt_template="review.j2"),
    )
    assert override.prompt == "Review x for reviewer"
    print("  PASS: template files")


# ── 3. Isolation of inputs ──────────────────────────────────────


def test_factory_copies_history_and_context(tmp_path):
    history = [ChatMessage(role="user", content="original")]
    context = PackedContext(files=[PackedFile("a.py", "x = 1", 5)], total_bytes=5, text="a.py")
    variables = {"nested": {"v": 1}}

    invocation = make_factory(tmp_path).create(
        make_definition("manager"),
        InvocationOptions(prompt="go", history=history, context=context, variables=variables),
    )
    history[0].content = "mutated"
    context.files.append(PackedFile("b.py", "", 0))
    variables["nested"]["v"] = 2

    assert invocation.history[0].content == "original"
    assert invocation.messages[1].content == "original"
    assert len(invocation.context.files) == 1
    assert invocation.variables == {"nested": {"v": 1}}
    print("  PASS: inputs copied")


def test_user_message_embeds_workspace_context():
    assert compose_user_message("task", PackedContext()) == "task"
    assert compose_user_message("task", PackedContext(text="  files  ")) == (
        "task\n\n<workspace_context>\nfiles\n</workspace_context>"
    )
    print("  PASS: workspace context block")
