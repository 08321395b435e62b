import sys
import os

# --- Path and Config ---
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(PROJECT_ROOT)

from pydantic import ValidationError
from uagents import Agent, Context, Protocol

from config.settings import AGENTVERSE_API_KEY, REPORTER_AGENT_SEED
from noise_services.agents.schemas import (
    NoiseReportRequest,
    ReportReceipt,
    RevealRequest,
    RevealResponse,
    StatsRequest,
    StatsResponse,
)
from noise_services.models import ReportDraft
from noise_services.reporting.orchestrator import ReportLifecycle
from noise_services.runtime import build_lifecycle, configure_logging

# Set by build_agent(); handlers read it at call time.
LIFECYCLE: ReportLifecycle = None

report_protocol = Protocol("ConfidentialNoiseReports", version="1.0")


@report_protocol.on_message(model=NoiseReportRequest, replies=ReportReceipt)
async def handle_report_request(ctx: Context, sender: str, msg: NoiseReportRequest):
    """Encrypts the reading and files it on the ledger on behalf of the sender."""
    ctx.logger.info(f"Noise report from {sender[:20]}...: '{msg.label}'")
    try:
        draft = ReportDraft(
            label=msg.label,
            decibel=msg.decibel,
            description=msg.description,
            public_aux1=msg.public_aux1,
            public_aux2=msg.public_aux2,
        )
    except ValidationError as e:
        ctx.logger.warning(f"Rejected invalid report from {sender[:20]}...: {e.error_count()} error(s)")
        await ctx.send(sender, ReportReceipt(record_id=msg.record_id, status="error", message="Invalid report"))
        return

    op = await LIFECYCLE.submit_report(draft, record_id=msg.record_id)
    message = "Noise report submitted" if op.succeeded else op.error
    await ctx.send(sender, ReportReceipt(record_id=op.record_id, status=op.outcome, message=message))


@report_protocol.on_message(model=RevealRequest, replies=RevealResponse)
async def handle_reveal_request(ctx: Context, sender: str, msg: RevealRequest):
    ctx.logger.info(f"Reveal request from {sender[:20]}... for {msg.record_id}")
    op = await LIFECYCLE.decrypt_report(msg.record_id)
    await ctx.send(sender, RevealResponse(
        record_id=msg.record_id,
        status=op.outcome,
        verified=op.succeeded and op.value is not None,
        value=op.value if op.succeeded else None,
        message="Decryption verified" if op.succeeded else op.error,
    ))


@report_protocol.on_message(model=StatsRequest, replies=StatsResponse)
async def handle_stats_request(ctx: Context, sender: str, msg: StatsRequest):
    stats = LIFECYCLE.stats()
    heatmap = LIFECYCLE.heatmap().cells if msg.include_heatmap else []
    await ctx.send(sender, StatsResponse(**stats.model_dump(), heatmap=heatmap))


async def startup(ctx: Context):
    """Initializes the confidential service and loads the current ledger records."""
    ctx.logger.info(f"Confidential reporter starting up. Address: {ctx.agent.address}")
    op = await LIFECYCLE.start()
    if op.succeeded:
        ctx.logger.info(f"Loaded {len(LIFECYCLE.records)} noise records from the ledger.")
    else:
        ctx.logger.warning(f"Could not load records from the ledger: {op.error}")


def build_agent(lifecycle: ReportLifecycle) -> Agent:
    global LIFECYCLE
    LIFECYCLE = lifecycle

    agent = Agent(
        name="EchoNetConfidentialReporter",
        seed=REPORTER_AGENT_SEED,
        port=8002,
        mailbox=bool(AGENTVERSE_API_KEY),
    )
    agent.on_event("startup")(startup)
    agent.include(report_protocol, publish_manifest=True)
    return agent


if __name__ == "__main__":
    configure_logging()
    print("Starting Confidential Reporter Agent...")
    agent = build_agent(build_lifecycle())
    print(f"Address: {agent.address}")
    agent.run()
