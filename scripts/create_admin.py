"""Create the first administrator account (credential + admins document)"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from valetclock.app import ValetClockApp
from valetclock.utils.exceptions import OperationNotAllowedError, ProvisioningError

console = Console()


async def _create(email: str, password: str, full_name: str, department: str) -> int:
    valet_app = ValetClockApp().initialize()
    try:
        admin = await valet_app.admin_service.setup_first_admin(email, password, full_name, department)
    except (ProvisioningError, OperationNotAllowedError) as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        return 1
    console.print(f"[bold green]✓ Administrator created:[/bold green] {admin.email} (id {admin.id})")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", required=True)
    parser.add_argument("--full-name", required=True)
    parser.add_argument("--department", default="Management")
    args = parser.parse_args()

    console.print(Panel("Valet Clock administrator setup", border_style="cyan"))
    password = Prompt.ask("Password", password=True)
    if password != Prompt.ask("Confirm password", password=True):
        console.print("[bold red]✗ Passwords do not match[/bold red]")
        return 1
    return asyncio.run(_create(args.email, password, args.full_name, args.department))


if __name__ == "__main__":
    sys.exit(main())
