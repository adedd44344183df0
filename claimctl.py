#!/usr/bin/env python3
"""
CLI tool for the Claim Provisioner
Provides a kubectl-like interface for bucket claims and resource classes
"""

import json

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:8000/api/v1"


class ClaimProvisionerCLI:
    """CLI client for the Claim Provisioner API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
            if response.status_code == 204 or not response.content:
                return {}
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None


def load_manifests(filename: str) -> list:
    """Read one or more manifests from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return [doc for doc in yaml.safe_load_all(f) if doc]
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def manifest_request(manifest: dict):
    """
    Turn a manifest into (endpoint, payload).

    Claims are ``kind: Claim`` with ``metadata.namespace``/``metadata.name``
    and a ``spec``; classes are ``kind: ResourceClass`` with ``metadata.name``
    and top-level ``provisioner``, ``parameters`` and ``reclaimPolicy``.
    """
    kind = manifest.get("kind")
    metadata = manifest.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise click.ClickException("manifest is missing metadata.name")

    if kind == "Claim":
        spec = manifest.get("spec") or {}
        namespace = metadata.get("namespace", "default")
        payload = {
            "name": name,
            "resource_class_name": spec.get("resourceClassName", ""),
            "bucket_name": spec.get("bucketName"),
            "generate_bucket_name": spec.get("generateBucketName"),
        }
        return f"/namespaces/{namespace}/claims", payload

    if kind == "ResourceClass":
        payload = {
            "name": name,
            "provisioner": manifest.get("provisioner", ""),
            "parameters": manifest.get("parameters") or {},
            "reclaim_policy": manifest.get("reclaimPolicy", "Delete"),
        }
        return "/resource-classes", payload

    raise click.ClickException(f"unsupported kind: {kind!r}")


def split_claim_ref(ref: str):
    """Parse NAMESPACE/NAME"""
    if "/" not in ref:
        raise click.BadParameter("expected NAMESPACE/NAME", param_hint="CLAIM")
    namespace, name = ref.split("/", 1)
    return namespace, name


@click.group()
@click.option(
    "--api-url",
    envvar="CLAIMCTL_API_URL",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the provisioner API",
)
@click.pass_context
def cli(ctx, api_url):
    """Claim Provisioner CLI - kubectl-like interface for bucket claims"""
    ctx.obj = ClaimProvisionerCLI(api_url)


@cli.command()
@click.option(
    "--filename", "-f", required=True, type=click.Path(exists=True), help="Manifest"
)
@click.pass_obj
def apply(client, filename):
    """Create claims and resource classes from a YAML/JSON file"""
    for manifest in load_manifests(filename):
        endpoint, payload = manifest_request(manifest)
        result = client._make_request("POST", endpoint, json=payload)
        if result:
            click.echo(f"{manifest['kind']} {payload['name']} created")


@cli.command()
@click.argument("resource", type=click.Choice(["claims", "classes", "bindings"]))
@click.option("--namespace", "-n", default="default", help="Namespace for claims")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
@click.pass_obj
def get(client, resource, namespace, output):
    """List claims, resource classes or bindings"""
    if resource == "claims":
        result = client._make_request("GET", f"/namespaces/{namespace}/claims")
        headers = ["Namespace", "Name", "Class", "Phase", "Bucket", "Binding"]
        fields = [
            "namespace",
            "name",
            "resource_class_name",
            "phase",
            "bucket_name",
            "binding_name",
        ]
    elif resource == "classes":
        result = client._make_request("GET", "/resource-classes")
        headers = ["Name", "Provisioner", "Reclaim Policy", "Parameters"]
        fields = ["name", "provisioner", "reclaim_policy", "parameters"]
    else:
        result = client._make_request("GET", "/bindings")
        headers = ["Name", "Claim", "Class", "Bucket", "Host", "Phase"]
        fields = [
            "name",
            "claim",
            "resource_class_name",
            "bucket_name",
            "bucket_host",
            "phase",
        ]
        if result:
            for entry in result:
                entry["claim"] = f"{entry.get('claim_namespace')}/{entry.get('claim_name')}"

    if result is None:
        return
    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return
    if not result:
        click.echo(f"No {resource} found")
        return

    rows = [[entry.get(f, "") for f in fields] for entry in result]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("claim")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="json")
@click.pass_obj
def describe(client, claim, output):
    """Describe a claim given as NAMESPACE/NAME"""
    namespace, name = split_claim_ref(claim)
    result = client._make_request("GET", f"/namespaces/{namespace}/claims/{name}")

    if result:
        if output == "yaml":
            click.echo(yaml.dump(result, default_flow_style=False))
        else:
            click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("claim")
@click.confirmation_option(prompt="Are you sure you want to delete this claim?")
@click.pass_obj
def delete(client, claim):
    """Delete a claim given as NAMESPACE/NAME (deprovisions its bucket)"""
    namespace, name = split_claim_ref(claim)
    result = client._make_request("DELETE", f"/namespaces/{namespace}/claims/{name}")

    if result is not None:
        click.echo(f"Claim {namespace}/{name} deleted")


@cli.command("connection-info")
@click.argument("claim")
@click.pass_obj
def connection_info(client, claim):
    """Show connection-info published for a bound claim"""
    namespace, name = split_claim_ref(claim)
    result = client._make_request(
        "GET", f"/namespaces/{namespace}/claims/{name}/connection-info"
    )

    if result and "data" in result:
        rows = sorted(result["data"].items())
        click.echo(tabulate(rows, headers=["Key", "Value"], tablefmt="grid"))
    else:
        click.echo("No connection info available")


if __name__ == "__main__":
    cli()
