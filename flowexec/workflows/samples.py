"""
Sample Workflows.

Two demo definitions registered at startup:

- ``article-review``: an agent drafts an article, a tool measures it and a
  decision loops back until it is long enough; a human then approves,
  rejects or asks for a revision (which loops back again).
- ``text-insights``: three tools fan out over the same text in parallel and
  a transform joins their results into one report.
"""

from typing import Any, Dict, List
import logging

from flowexec.engine.definition import WorkflowDefinition
from flowexec.storage.memory import WorkflowStorage


logger = logging.getLogger(__name__)


ARTICLE_REVIEW: Dict[str, Any] = {
    "id": "article-review",
    "version": 1,
    "name": "Article Review",
    "description": "Draft, measure and loop until long enough, then ask a human to approve.",
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "config": {
                "requiredInputs": ["topic"],
                "defaults": {"maxRounds": 3, "minWords": 40},
            },
            "edges": [{"to": "init"}],
        },
        {
            "id": "init",
            "type": "transform",
            "name": "Initialize",
            "config": {
                "operations": [
                    {"set": "round", "value": 0},
                    {"set": "drafts", "value": []},
                    {"set": "feedback", "value": ""},
                ],
            },
            "edges": [{"to": "draft"}],
        },
        {
            "id": "draft",
            "type": "agent",
            "name": "Write Draft",
            "config": {
                "system": "You are a concise technical writer.",
                "prompt": "Write a short article about ${topic}. ${feedback}",
                "outputVariable": "draft",
                "maxIterations": 10,
            },
            "edges": [{"to": "measure"}],
        },
        {
            "id": "measure",
            "type": "tool",
            "name": "Measure Draft",
            "config": {
                "tool": "word_count",
                "parameters": {"text": "$.draft"},
                "outputVariable": "stats",
            },
            "edges": [{"to": "bump"}],
        },
        {
            "id": "bump",
            "type": "transform",
            "name": "Track Round",
            "config": {
                "operations": [
                    {"increment": "round", "by": 1},
                    {"push": "draft", "to": "drafts"},
                ],
            },
            "edges": [{"to": "check"}],
        },
        {
            "id": "check",
            "type": "decision",
            "name": "Long Enough?",
            "config": {
                "mode": "expression",
                "expression": "stats.words >= minWords || round >= maxRounds",
            },
            "edges": [
                {"to": "review", "condition": "true"},
                {"to": "draft", "condition": "false", "loop": True},
            ],
        },
        {
            "id": "review",
            "type": "human",
            "name": "Editorial Review",
            "config": {
                "message": "Round ${round}: please review the draft about ${topic}.",
                "options": [
                    {"value": "approve", "label": "Approve"},
                    {"value": "reject", "label": "Reject"},
                    {"value": "revise", "label": "Request revision"},
                ],
                "showData": ["draft", "stats.words", "round"],
                "outputVariable": "review",
            },
            "edges": [
                {"to": "approved", "condition": "approve"},
                {"to": "rejected", "condition": "reject"},
                {"to": "apply_feedback", "condition": "revise"},
            ],
        },
        {
            "id": "apply_feedback",
            "type": "transform",
            "name": "Apply Feedback",
            "config": {
                "operations": [
                    {"set": "feedback", "value": "Reviewer feedback: ${review.data.comment}"},
                ],
            },
            "edges": [{"to": "draft", "loop": True}],
        },
        {
            "id": "approved",
            "type": "end",
            "name": "Published",
            "config": {
                "status": "approved",
                "outputMapping": {
                    "topic": "$.topic",
                    "article": "$.draft",
                    "rounds": "$.round",
                },
            },
        },
        {
            "id": "rejected",
            "type": "end",
            "name": "Rejected",
            "config": {
                "status": "rejected",
                "includeFields": ["topic", "round"],
            },
        },
    ],
}


TEXT_INSIGHTS: Dict[str, Any] = {
    "id": "text-insights",
    "version": 1,
    "name": "Text Insights",
    "description": "Run three text tools in parallel and join their results.",
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "config": {"requiredInputs": ["text"]},
            "edges": [{"to": "counts"}, {"to": "keywords"}, {"to": "summary"}],
        },
        {
            "id": "counts",
            "type": "tool",
            "config": {
                "tool": "word_count",
                "parameters": {"text": "$.text"},
                "outputVariable": "counts",
            },
            "edges": [{"to": "report"}],
        },
        {
            "id": "keywords",
            "type": "tool",
            "config": {
                "tool": "extract_keywords",
                "parameters": {"text": "$.text", "limit": 5},
                "outputVariable": "keywords",
            },
            "edges": [{"to": "report"}],
        },
        {
            "id": "summary",
            "type": "tool",
            "config": {
                "tool": "summarize_text",
                "parameters": {"text": "$.text", "max_sentences": 2},
                "outputVariable": "summary",
                "continueOnError": True,
            },
            "edges": [{"to": "report"}],
        },
        {
            "id": "report",
            "type": "transform",
            "name": "Build Report",
            "config": {
                "operations": [
                    {
                        "set": "report",
                        "value": {
                            "words": "$.counts.words",
                            "keywords": "$.keywords.keywords",
                            "summary": "$.summary.summary",
                        },
                    },
                ],
            },
            "edges": [{"to": "end"}],
        },
        {
            "id": "end",
            "type": "end",
            "config": {"includeFields": ["report"]},
        },
    ],
}


SAMPLE_WORKFLOWS: List[Dict[str, Any]] = [ARTICLE_REVIEW, TEXT_INSIGHTS]


async def register_sample_workflows(storage: WorkflowStorage) -> List[WorkflowDefinition]:
    """
    Register the sample workflows in storage.

    Workflows whose id is already present are left alone, so calling this
    more than once is harmless.
    """
    registered = []
    for raw in SAMPLE_WORKFLOWS:
        if await storage.exists(raw["id"]):
            continue
        definition = await storage.save(WorkflowDefinition.model_validate(raw))
        registered.append(definition)
        logger.info(f"Registered sample workflow with ID: {definition.id}")
    return registered
