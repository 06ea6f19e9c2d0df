#!/usr/bin/env python3
"""
symsrv - Main Entry Point

Download symbol files from Microsoft-style symbol servers.
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_ERROR = 2


def _int(text: str) -> int:
    """Integer argument; hex with a 0x prefix is accepted."""
    return int(text, 0)


def _hex(text: str) -> int:
    """Hex argument, with or without a 0x prefix."""
    return int(text, 16)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='symsrv - Download debug symbols from symbol servers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Download a PDB by GUID and age
  %(prog)s pdb ntdll.pdb 1EB1C2E2A2D4F5E0B6C73D2B0B61A4A1 1

  # Download an executable by timestamp and image size (hex)
  %(prog)s exe ntdll.dll 5f4a2b3c 1f0000

  # Show where a file would be cached and fetched from
  %(prog)s path ntdll.pdb 1EB1C2E2A2D4F5E0B6C73D2B0B61A4A11

The server list comes from --symbol-path or _NT_SYMBOL_PATH, e.g.
  SRV*C:\\Symbols*https://msdl.microsoft.com/download/symbols
        """
    )
    parser.add_argument('--symbol-path', help='Server list (SRV*<cache>*<url>[;...])')
    parser.add_argument('--timeout', type=float, help='Per-server timeout in seconds')
    parser.add_argument('--async', dest='use_async', action='store_true',
                        help='Use the asyncio (httpx) transport')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    sub = parser.add_subparsers(dest='command', required=True)

    pdb = sub.add_parser('pdb', help='Download a PDB by GUID and age')
    pdb.add_argument('name')
    pdb.add_argument('guid', help='GUID ({...}, dashed, or 32 hex digits)')
    pdb.add_argument('age', type=_int)

    exe = sub.add_parser('exe', help='Download an executable by timestamp and size')
    exe.add_argument('name')
    exe.add_argument('timestamp', type=_hex, help='PE timestamp (hex)')
    exe.add_argument('size', type=_hex, help='Image size (hex)')

    raw = sub.add_parser('raw', help='Download a file by precomputed hash')
    raw.add_argument('name')
    raw.add_argument('hash')

    path = sub.add_parser('path', help='Print cache paths and URLs for a file')
    path.add_argument('name')
    path.add_argument('hash')

    return parser


def _settings(args):
    from symsrv import Settings

    changes = {}
    if args.symbol_path:
        changes['symbol_path'] = args.symbol_path
    if args.timeout is not None:
        changes['timeout'] = args.timeout
    if args.verbose:
        changes['verbose'] = True
    return Settings.from_env().override(**changes)


def _identifier(args):
    from symsrv import ExeInfo, PdbInfo, RawHash

    if args.command == 'pdb':
        return PdbInfo.from_guid_string(args.guid, args.age)
    if args.command == 'exe':
        return ExeInfo(timestamp=args.timestamp, size=args.size)
    return RawHash(args.hash)


def _download(settings, info, name, use_async: bool):
    from symsrv import AsyncSymbolClient, SymbolClient

    if use_async:
        async def run():
            async with AsyncSymbolClient(settings=settings) as client:
                return await client.download(info, name)
        return asyncio.run(run())

    with SymbolClient(settings=settings) as client:
        return client.download(info, name)


def main(argv=None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    from symsrv import DownloadStatus, NotFoundError, SymSrvError, cache_file_path, server_file_url
    from symsrv.client import safe_print

    try:
        settings = _settings(args)
        servers = settings.servers()

        if args.command == 'path':
            for spec in servers:
                safe_print(f"{spec}")
                safe_print(f"  cache: {cache_file_path(spec.cache_path, args.name, args.hash)}")
                safe_print(f"  url:   {server_file_url(spec.server_url, args.name, args.hash)}")
            return EXIT_OK

        info = _identifier(args)
        result = _download(settings, info, args.name, args.use_async)
    except NotFoundError as e:
        safe_print(f"[SYMSRV] - {e}")
        return EXIT_NOT_FOUND
    except (SymSrvError, ValueError) as e:
        safe_print(f"[SYMSRV] - {e}")
        return EXIT_ERROR

    label = 'cached' if result.status is DownloadStatus.ALREADY_EXISTS else 'downloaded'
    safe_print(f"[SYMSRV] + {args.name} ({label}): {result.path}")
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
