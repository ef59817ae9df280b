"""
LangGraph StateGraph for one certificate worker execution.

Graph topology:
  START
    → certificate_loader
    → domain_validator        (security email; DNS checks unless forced)
    → [conditional: failed → failure_handler]
    → renewal_gate            (skipped when forced)
    → [conditional: not_due → END
                    failed  → failure_handler]
    → issuance_starter        (fresh work dir, stage Issuing)
    → certificate_issuer      (certbot)
    → [conditional: failed → failure_handler]
    → certificate_deployer    (move files, write proxy config, read dates)
    → [conditional: failed → failure_handler]
    → certificate_saver  ←── failure_handler
    → domain_linker
    → END

Success and failure both converge on certificate_saver, so every verdict is
persisted and fanned out to the domain records.
"""
from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from worker.nodes.deployer import certificate_deployer
from worker.nodes.failure import failure_handler
from worker.nodes.issuer import certificate_issuer, issuance_starter
from worker.nodes.loader import certificate_loader
from worker.nodes.persistence import certificate_saver, domain_linker
from worker.nodes.renewal import renewal_gate
from worker.nodes.router import renewal_router, stage_router
from worker.nodes.validator import domain_validator
from worker.state import WorkflowState


def build_graph():
    """
    Build and compile the certificate worker StateGraph.

    Collaborators are not bound here; pass them per invocation as
    config={"configurable": {"services": WorkerServices(...)}}.
    """
    builder = StateGraph(WorkflowState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("certificate_loader", certificate_loader)
    builder.add_node("domain_validator", domain_validator)
    builder.add_node("renewal_gate", renewal_gate)
    builder.add_node("issuance_starter", issuance_starter)
    builder.add_node("certificate_issuer", certificate_issuer)
    builder.add_node("certificate_deployer", certificate_deployer)
    builder.add_node("failure_handler", failure_handler)
    builder.add_node("certificate_saver", certificate_saver)
    builder.add_node("domain_linker", domain_linker)

    # ── Pipeline ──────────────────────────────────────────────────────────
    builder.add_edge(START, "certificate_loader")
    builder.add_edge("certificate_loader", "domain_validator")

    builder.add_conditional_edges(
        "domain_validator",
        stage_router,
        {"ok": "renewal_gate", "failed": "failure_handler"},
    )
    builder.add_conditional_edges(
        "renewal_gate",
        renewal_router,
        {
            "due": "issuance_starter",
            "not_due": END,
            "failed": "failure_handler",
        },
    )
    builder.add_edge("issuance_starter", "certificate_issuer")
    builder.add_conditional_edges(
        "certificate_issuer",
        stage_router,
        {"ok": "certificate_deployer", "failed": "failure_handler"},
    )
    builder.add_conditional_edges(
        "certificate_deployer",
        stage_router,
        {"ok": "certificate_saver", "failed": "failure_handler"},
    )

    # ── Verdict is always persisted, then fanned out ──────────────────────
    builder.add_edge("failure_handler", "certificate_saver")
    builder.add_edge("certificate_saver", "domain_linker")
    builder.add_edge("domain_linker", END)

    return builder.compile()
