"""
End-to-end smoke check against a running pooled storage service.

Walks the read-only endpoints, and when account ids are supplied also runs a
full pool lifecycle: create, start, stats, stop, delete.

Usage:
    poolmgr-smoke-check --base-url http://127.0.0.1:8080 --account-id <id> --account-id <id>
"""
import argparse
import json
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests


class SmokeCheckError(RuntimeError):
    pass


def req(http, base_url: str, method: str, path: str, **kwargs: Any):
    url = f"{base_url.rstrip('/')}{path}"
    return http.request(method, url, timeout=20, **kwargs)


def req_json(
    http,
    base_url: str,
    method: str,
    path: str,
    expected: Tuple[int, ...] = (200,),
    **kwargs: Any,
) -> Any:
    response = req(http, base_url, method, path, **kwargs)
    try:
        payload = response.json()
    except Exception as exc:
        raise SmokeCheckError(f"{method} {path} returned non-JSON body: {response.text[:300]}") from exc

    if response.status_code not in expected:
        raise SmokeCheckError(
            f"{method} {path} failed with HTTP {response.status_code}: {json.dumps(payload, default=str)}"
        )
    return payload


def ensure_api_up(http, base_url: str) -> Dict[str, Any]:
    health = req_json(http, base_url, "GET", "/api/health")
    if health.get("status") != "healthy":
        raise SmokeCheckError(f"Service at {base_url} reports unhealthy: {health}")
    return health


def run_validation(
    base_url: str,
    account_ids: Sequence[str] = (),
    strategy: str = "union",
    http=None,
) -> Dict[str, Any]:
    http = http or requests.Session()
    report: Dict[str, Any] = {"base_url": base_url, "checks": []}
    checks: List[str] = report["checks"]

    report["health"] = ensure_api_up(http, base_url)
    checks.append("health")

    report["status"] = req_json(http, base_url, "GET", "/api/status")
    report["accounts"] = len(req_json(http, base_url, "GET", "/api/accounts"))
    report["pools"] = len(req_json(http, base_url, "GET", "/api/pools"))
    req_json(http, base_url, "GET", "/api/stats")
    checks.append("read_endpoints")

    if not account_ids:
        return report

    pool = req_json(
        http,
        base_url,
        "POST",
        "/api/pools",
        expected=(201,),
        json={
            "name": f"smoke-{int(time.time())}",
            "strategy": strategy,
            "account_ids": list(account_ids),
        },
    )
    pool_id = pool["id"]
    report["pool_id"] = pool_id
    checks.append("pool_create")

    try:
        started = req_json(http, base_url, "POST", f"/api/pools/{pool_id}/start")
        if started.get("status") != "running":
            raise SmokeCheckError(f"Pool {pool_id} did not reach running: {started}")
        report["mount_path"] = started.get("mount_path")
        checks.append("pool_start")

        report["pool_stats"] = req_json(http, base_url, "GET", f"/api/stats/pools/{pool_id}")
        checks.append("pool_stats")

        stopped = req_json(http, base_url, "POST", f"/api/pools/{pool_id}/stop")
        if stopped.get("status") != "stopped" or stopped.get("mount_path"):
            raise SmokeCheckError(f"Pool {pool_id} did not stop cleanly: {stopped}")
        checks.append("pool_stop")
    finally:
        req_json(http, base_url, "DELETE", f"/api/pools/{pool_id}")
        checks.append("pool_delete")

    return report


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Smoke-check a running pooled storage service")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080", help="Service base URL")
    parser.add_argument(
        "--account-id",
        action="append",
        default=[],
        help="Existing account id to pool for the lifecycle check (repeatable, in priority order)",
    )
    parser.add_argument("--strategy", default="union", help="Union strategy for the lifecycle pool")
    parser.add_argument("--output", default="", help="Optional JSON report output path")
    args = parser.parse_args(argv)

    report = run_validation(args.base_url, account_ids=args.account_id, strategy=args.strategy)
    pretty = json.dumps(report, indent=2, default=str)
    print(pretty)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(pretty)
            handle.write("\n")


if __name__ == "__main__":
    main()
