# main.py
import asyncio
import sys
import questionary
from datetime import datetime
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

from arbhawk.config import MAINNET, TESTNET, load_config
from arbhawk.engine import OpportunityEngine
from arbhawk.logger import setup_console_logger, AsyncAuditLogger
from arbhawk.models import Severity, TradeStatus

SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "dark_orange",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}

STATUS_STYLE = {
    TradeStatus.COMPLETED: "green",
    TradeStatus.FAILED: "red",
    TradeStatus.PENDING: "yellow",
}

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick the network and the pairs to monitor."""
    print("\n🦅 ARBHAWK OPPORTUNITY ENGINE \n")
    env = questionary.select(
        "Select Network:", choices=[TESTNET, MAINNET], default=config['system']['environment'],
    ).ask()
    if env is None:
        sys.exit()

    pairs = questionary.checkbox(
        "Select Pairs to Monitor:",
        choices=[questionary.Choice(p, checked=True) for p in config['pairs']],
    ).ask()
    if not pairs:
        print("No pairs selected. Exiting.")
        sys.exit()

    auto = questionary.confirm("Enable auto-trading?", default=config['risk']['auto_trade_enabled']).ask()
    return env, pairs, bool(auto)


def generate_dashboard(engine: OpportunityEngine):
    """
    Creates the Rich Console Dashboard layout.
    Shows eligible routes, recent trades, diagnostics and the realized profit total.
    """

    # 1. Opportunities
    opp_table = Table(title="📡 Arbitrage Opportunities")
    opp_table.add_column("Route", style="cyan")
    opp_table.add_column("Venues", style="magenta")
    opp_table.add_column("Entry", justify="right")
    opp_table.add_column("Profit %", justify="right")
    opp_table.add_column("Fee", justify="right")
    opp_table.add_column("Net", justify="right", style="green")

    for route in engine.opportunities[:10]:
        opp_table.add_row(
            ("△ " if route.is_triangular else "") + route.label,
            " → ".join(route.venues),
            f"${route.entry_amount:,.2f}",
            f"{route.profit_ratio * 100:.2f}%",
            f"${route.fee_cost:.4f}",
            f"${route.net_profit:,.4f}",
        )

    # 2. Trade history
    hist_table = Table(title="🧾 Trading History")
    hist_table.add_column("Time")
    hist_table.add_column("Route", style="cyan")
    hist_table.add_column("Status")
    hist_table.add_column("Realized", justify="right")

    for trade in engine.trade_history[:8]:
        style = STATUS_STYLE[trade.status]
        realized = f"${trade.realized_profit:,.4f}" if trade.realized_profit is not None else "-"
        hist_table.add_row(
            datetime.fromtimestamp(trade.submitted_at).strftime("%H:%M:%S"),
            trade.route.label,
            f"[{style}]{trade.status.value}[/{style}]",
            realized,
        )

    # 3. Diagnostics
    if engine.issues:
        lines = []
        for issue in engine.issues:
            style = SEVERITY_STYLE[issue.severity]
            lines.append(f"[{style}]{issue.severity.name}[/{style}] {issue.title}\n  [dim]{issue.remediation}[/dim]")
        diag_body = "\n".join(lines)
    else:
        diag_body = "[green]No issues detected[/green]"

    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="middle"),
        Layout(name="bottom")
    )

    layout["top"].update(Panel(opp_table))
    layout["middle"].split_row(
        Layout(Panel(hist_table)),
        Layout(Panel(diag_body, title="🩺 Diagnostics"))
    )

    mode = "TESTNET" if engine.is_testnet else "MAINNET"
    auto = "ON" if engine.risk_config.auto_trade_enabled else "OFF"
    footer = Panel(
        f"[bold gold1]TOTAL REALIZED PROFIT: ${engine.total_realized_profit:,.4f}[/bold gold1]"
        f"  |  {mode}  |  Auto-trade {auto}  |  {len(engine.opportunities)} opportunities found",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class ArbHawkApp:
    def __init__(self, config, environment, pairs, auto_trade):
        self.config = config
        self.config['system']['environment'] = environment
        self.config['pairs'] = pairs

        self.audit_log = AsyncAuditLogger(self.config['audit']['trade_log'])
        self.logger = setup_console_logger("ArbHawk", self.config['system']['log_level'])
        self.engine = OpportunityEngine.from_config(self.config, self.logger, audit_log=self.audit_log)
        self.auto_trade = auto_trade

    async def run(self):
        try:
            await self.audit_log.start()
            if not await self.engine.wallet.connect():
                print("⚠️ Wallet not connected. Trades will be rejected.")
            if self.auto_trade:
                self.engine.set_auto_trade(True)
            await self.engine.start()

            console = Console()
            with Live(console=console, refresh_per_second=4) as live:
                while self.engine.running:
                    live.update(generate_dashboard(self.engine))
                    await asyncio.sleep(0.25)
        finally:
            print("Shutting down resources...")
            await self.engine.shutdown()

if __name__ == "__main__":
    raw_conf = load_config("config.yaml")
    try:
        env, sel_pairs, auto = startup_selection(raw_conf)
        app = ArbHawkApp(raw_conf, env, sel_pairs, auto)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()
