"""
Poste de scan en ligne de commande.

    unitrack-scan --api-url http://localhost:8000 --access-token $JWT --lat 12.9716 --lon 77.5946
    unitrack-scan ... --url "https://portail/attendance/scan?token=abc123"   # sans caméra

Sans --url / --token, la caméra est ouverte (arrière de préférence). Si aucune
caméra n'est disponible, le code peut être saisi au clavier.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from unitrack.scanner.client import CheckInClient
from unitrack.scanner.flow import ScanFlow
from unitrack.scanner.geolocation import LocationOptions, StaticLocationProvider
from unitrack.scanner.qr_decoder import CameraDevice, CameraUnavailable, QRScanner

logger = logging.getLogger(__name__)
console = Console()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unitrack-scan",
        description="Pointage de présence par QR code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--api-url", default=os.environ.get("UNITRACK_API_URL", "http://localhost:8000"))
    parser.add_argument("--access-token", default=os.environ.get("UNITRACK_ACCESS_TOKEN"),
                        help="JWT du fournisseur d'identité (ou UNITRACK_ACCESS_TOKEN)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--url", help="URL /attendance/scan?token=... (évite l'étape caméra)")
    source.add_argument("--token", help="Jeton saisi manuellement")
    parser.add_argument("--camera", type=int, default=None, help="Index de la caméra à utiliser")
    parser.add_argument("--lat", type=float, required=True, help="Latitude du poste")
    parser.add_argument("--lon", type=float, required=True, help="Longitude du poste")
    parser.add_argument("--accuracy", type=float, default=0.0, help="Précision en mètres")
    parser.add_argument("--timeout", type=float, default=10.0, help="Délai de localisation (s)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def scan_payload(camera_index: Optional[int]) -> Optional[str]:
    """Lit un QR code à la caméra ; bascule sur la saisie manuelle si la caméra est indisponible."""
    from unitrack.scanner.camera import OpenCVFrameSource, decode_frame

    scanned = []
    scanner = QRScanner(OpenCVFrameSource(), decode_frame, scanned.append)
    device = CameraDevice(camera_index) if camera_index is not None else None
    try:
        used = scanner.start(device)
        console.print(f"[cyan]Présentez le QR code devant la caméra ({used.label or used.index})… Ctrl+C pour annuler.[/cyan]")
        scanner.run()
    except CameraUnavailable as e:
        console.print(f"[yellow]{e}[/yellow]")
        scanner.submit_manual(console.input("Saisissez le code affiché par l'enseignant : "))
    except KeyboardInterrupt:
        pass
    finally:
        scanner.stop()
    return scanned[0] if scanned else None


def print_result(result: dict) -> None:
    table = Table(title="Présence enregistrée")
    table.add_column("Champ")
    table.add_column("Valeur")
    table.add_row("Session", str(result.get("session_name") or "-"))
    table.add_row("Type", str(result.get("session_type") or "-"))
    table.add_row("Statut", str(result.get("status")))
    table.add_row("Heure", str(result.get("check_in_time")))
    distance = result.get("distance_from_faculty_meters")
    if distance is not None:
        table.add_row("Distance", f"{round(distance)} m")
    console.print(table)


async def run_flow(args: argparse.Namespace, payload: str) -> int:
    provider = StaticLocationProvider(args.lat, args.lon, args.accuracy)
    options = LocationOptions(timeout_ms=int(args.timeout * 1000))

    async with CheckInClient(args.api_url, args.access_token) as client:
        flow = ScanFlow(client, provider, options)
        result = await flow.run(payload)

        # Reprise manuelle : position ou envoi, jamais pour un jeton invalide
        while result is None and flow.error and not flow.needs_new_token:
            console.print(f"[red]{flow.error}[/red]")
            if flow.error_kind == "conflict":
                return 1
            if console.input("Réessayer ? [o/N] ").strip().lower() not in ("o", "oui", "y"):
                return 1
            if flow.location is None and await flow.acquire_location() is None:
                continue
            result = await flow.submit()

        if result is None:
            console.print(f"[red]{flow.error or 'Pointage impossible.'}[/red]")
            if flow.needs_new_token:
                console.print("Demandez un nouveau QR code à l'enseignant.")
            return 1

    print_result(result)
    return 0


def main(argv: Optional[list] = None) -> int:
    args = create_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if not args.access_token:
        console.print("[red]Jeton d'accès manquant (--access-token ou UNITRACK_ACCESS_TOKEN).[/red]")
        return 2

    payload = args.url or args.token or scan_payload(args.camera)
    if not payload:
        console.print("[yellow]Aucun code lu.[/yellow]")
        return 1

    return asyncio.run(run_flow(args, payload))


if __name__ == "__main__":
    sys.exit(main())
