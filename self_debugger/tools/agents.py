"""Fixer and Critic collaborators.

The engine only depends on the two protocols below. ``ClaudeFixer`` and
``ClaudeCritic`` are the reference implementations: each runs a Claude agent
whose only output channel is a store tool with a fixed schema.
"""

import json
from pathlib import Path
from typing import Any, Optional, Protocol

from claude_agent_sdk import (
    ClaudeSDKClient,
    ClaudeAgentOptions,
    tool,
    create_sdk_mcp_server,
    AssistantMessage,
    TextBlock,
    ResultMessage,
)

from ..models import FixProposal, FixType, Issue
from ..utils import get_logger
from .storage_tool import StorageTool


logger = get_logger(__name__)


class Fixer(Protocol):
    async def propose(self, issue: Issue, fix_template: Optional[dict]) -> Optional[FixProposal]:
        """Return a proposal for the issue, or None if no fix can be proposed."""
        ...


class Critic(Protocol):
    async def score(self, proposal: FixProposal, issue: Issue) -> float:
        """Score a proposal from 0 to 100."""
        ...


FIX_PROMPT = """
You are maintaining a plugin ecosystem. A structural check failed on one plugin file.
Propose the smallest change that makes the check pass.

## Issue
- Plugin: {plugin}
- File: {component}
- Rule: {rule_id} (severity: {severity})
- Check: {check_id}
- Problem: {error_message}
- Expected: {expected}
- Actual: {actual}

## Fix template
{fix_template}

## Current file content
```
{content}
```

## Output
Call `store_fix` exactly once with:
- description: one line, imperative, used as the commit subject
- fix_type: one of [diff, prepend, replace]
- diff: a unified diff relative to the repository root (fix_type=diff only)
- fixed_content: text to prepend, or the full new file (prepend/replace only)

Do not change anything unrelated to the failed check.
"""


CRITIC_PROMPT = """
You are reviewing an automatically generated fix before it is committed.

## Issue
- Plugin: {plugin}
- File: {component}
- Rule: {rule_id}
- Problem: {error_message}

## Proposed fix ({fix_type})
{description}

```
{change}
```

## Scoring
Score from 0 to 100:
- 90-100: fixes exactly the reported problem, nothing else changes
- 70-89: correct, with minor unrelated or cosmetic changes
- 40-69: partially fixes the problem or risks breaking the plugin
- 0-39: wrong, destructive, or unrelated to the problem

Call `store_score` with the score and a short reasoning.
"""


def _agent_options(server_name: str, server, tool_name: str, system_prompt: str) -> ClaudeAgentOptions:
    return ClaudeAgentOptions(
        system_prompt=system_prompt,
        mcp_servers={server_name: server},
        allowed_tools=[f"mcp__{server_name}__{tool_name}"],
        max_turns=5,
    )


async def _run_agent(options: ClaudeAgentOptions, prompt: str, label: str) -> None:
    async with ClaudeSDKClient(options=options) as client:
        await client.query(prompt)

        async for message in client.receive_response():
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        logger.debug(f"[{label}] {block.text[:200]}")

            elif isinstance(message, ResultMessage):
                logger.info(f"{label} completed in {message.duration_ms}ms")
                if message.is_error:
                    logger.error(f"{label} finished with an error: {message.result}")


class ClaudeFixer:
    """Fixer backed by a Claude agent."""

    async def propose(self, issue: Issue, fix_template: Optional[dict]) -> Optional[FixProposal]:
        storage: StorageTool[dict] = StorageTool("fix")

        @tool(
            "store_fix",
            "Store the proposed fix for the issue",
            {
                "description": str,
                "fix_type": str,
                "diff": str,
                "fixed_content": str,
            }
        )
        async def store_fix(args: dict[str, Any]) -> dict[str, Any]:
            return storage.store(args)

        server = create_sdk_mcp_server(name="fixer", version="1.0.0", tools=[store_fix])
        options = _agent_options(
            "fixer", server, "store_fix",
            "You fix structural defects in plugin files with minimal changes.",
        )

        path = Path(issue.location.file)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            content = "(file missing or unreadable)"

        prompt = FIX_PROMPT.format(
            plugin=issue.plugin,
            component=issue.component,
            rule_id=issue.rule_id,
            severity=issue.severity,
            check_id=issue.check_id,
            error_message=issue.evidence.error_message,
            expected=issue.evidence.expected or "-",
            actual=issue.evidence.actual or "-",
            fix_template=json.dumps(fix_template, indent=2) if fix_template else "(none)",
            content=content,
        )

        await _run_agent(options, prompt, "Fixer")

        data = storage.latest
        if data is None:
            logger.warning(f"Fixer stored no proposal for issue {issue.issue_id}")
            return None

        try:
            fix_type = FixType(str(data.get("fix_type", "diff")).lower())
        except ValueError:
            logger.warning(f"Fixer returned unknown fix_type: {data.get('fix_type')}")
            return None

        return FixProposal(
            issue_id=issue.issue_id,
            description=data.get("description", "") or f"resolve {issue.rule_id}",
            fix_type=fix_type,
            diff=data.get("diff", "") or "",
            fixed_content=data.get("fixed_content", "") or "",
        )


class ClaudeCritic:
    """Critic backed by a Claude agent."""

    async def score(self, proposal: FixProposal, issue: Issue) -> float:
        storage: StorageTool[dict] = StorageTool("score")

        @tool(
            "store_score",
            "Store the quality score for a proposed fix",
            {
                "score": float,
                "reasoning": str,
            }
        )
        async def store_score(args: dict[str, Any]) -> dict[str, Any]:
            return storage.store(args)

        server = create_sdk_mcp_server(name="critic", version="1.0.0", tools=[store_score])
        options = _agent_options(
            "critic", server, "store_score",
            "You are a strict reviewer of automated fixes. Prefer rejecting to breaking a plugin.",
        )

        prompt = CRITIC_PROMPT.format(
            plugin=issue.plugin,
            component=issue.component,
            rule_id=issue.rule_id,
            error_message=issue.evidence.error_message,
            fix_type=proposal.fix_type.value,
            description=proposal.description,
            change=proposal.diff or proposal.fixed_content,
        )

        await _run_agent(options, prompt, "Critic")

        data = storage.latest
        if data is None:
            logger.warning(f"Critic stored no score for issue {issue.issue_id}")
            return 0.0

        try:
            value = float(data.get("score", 0.0))
        except (TypeError, ValueError):
            return 0.0
        logger.info(f"Critic score {value:.0f}: {data.get('reasoning', '')[:200]}")
        return max(0.0, min(100.0, value))
