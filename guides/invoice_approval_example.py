"""Example showing a two-step invoice approval with auto-approval for small amounts."""

import asyncio

from approvalflow import ApprovalEngine, InMemoryDocumentStore
from approvalflow.templates import build_from_template


async def main():
    """Route two invoices through an amount-based workflow."""
    documents = InMemoryDocumentStore({"inv-100": 250, "inv-101": 4800})
    engine = ApprovalEngine(documents=documents)

    # Department manager first, then finance; up to 1000 skips review
    workflow = await engine.create_workflow(
        build_from_template("amount_based", "Vendor invoices", [["mgr"], ["cfo"]])
    )

    small = await engine.submit_for_approval("inv-100", workflow.id, "clerk")
    print(f"inv-100: {small.status.value} (auto-approved: {small.auto_approved})")

    large = await engine.submit_for_approval("inv-101", workflow.id, "clerk")
    print(f"inv-101: waiting on {[i.document_id for i in await engine.list_pending_for('mgr')]}")

    large = await engine.act(large.id, "mgr", "approve", expected_version=large.version)
    large = await engine.act(large.id, "cfo", "approve", "paid next run", large.version)
    print(f"inv-101: {large.status.value} by {large.decided_by}")

    stats = await engine.get_stats()
    print(f"approved={stats.approved_count} auto={stats.auto_approved_count}")


if __name__ == "__main__":
    asyncio.run(main())
