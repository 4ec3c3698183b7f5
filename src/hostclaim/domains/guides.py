"""DNS provider walkthroughs for the cutover CNAME."""

from __future__ import annotations

from typing import Any


def provider_guides(name: str, target: str) -> dict[str, dict[str, Any]]:
    """Step-by-step CNAME setup for common DNS providers.

    Args:
        name: Record name relative to the zone (the subdomain).
        target: CNAME target the record must point at.
    """
    return {
        "cloudflare": {
            "provider": "Cloudflare",
            "steps": [
                "Log in to your Cloudflare dashboard",
                "Select your domain",
                "Go to DNS section",
                "Click 'Add record'",
                f"Set Type: CNAME, Name: {name}, Target: {target}",
                "Set Proxy status to 'DNS only' (gray cloud)",
                "Click Save",
            ],
        },
        "godaddy": {
            "provider": "GoDaddy",
            "steps": [
                "Log in to your GoDaddy account",
                "Go to DNS Management for your domain",
                "Click 'Add' to create a new record",
                f"Set Type: CNAME, Host: {name}, Points to: {target}",
                "Set TTL to 1 Hour",
                "Click Save",
            ],
        },
        "namecheap": {
            "provider": "Namecheap",
            "steps": [
                "Log in to your Namecheap account",
                "Go to Domain List and click 'Manage' next to your domain",
                "Go to Advanced DNS tab",
                "Click 'Add New Record'",
                f"Set Type: CNAME Record, Host: {name}, Value: {target}",
                "Set TTL to Automatic",
                "Click the checkmark to save",
            ],
        },
        "route53": {
            "provider": "AWS Route 53",
            "steps": [
                "Log in to AWS Console and go to Route 53",
                "Select your hosted zone",
                "Click 'Create Record'",
                f"Record name: {name}",
                "Record type: CNAME",
                f"Value: {target}",
                "TTL: 300",
                "Click 'Create records'",
            ],
        },
    }


def testing_methods(hostname: str) -> list[dict[str, str]]:
    return [
        {"method": "Browser", "instruction": f"Visit https://{hostname} to test your setup"},
        {"method": "DNS Lookup", "instruction": f"Run: dig {hostname} CNAME to verify the record"},
        {"method": "SSL Check", "instruction": f"Verify SSL certificate is valid for {hostname}"},
    ]


CUTOVER_ISSUES = [
    {
        "issue": "Domain not loading",
        "solution": (
            "Check if CNAME record is correctly set and DNS has propagated "
            "(can take up to 1 hour)"
        ),
    },
    {
        "issue": "SSL certificate error",
        "solution": (
            "SSL certificates are automatically provisioned after DNS propagation. "
            "Wait 5-10 minutes after CNAME is active"
        ),
    },
    {
        "issue": "404 or wrong content",
        "solution": (
            "Ensure you're using the exact CNAME target provided "
            "and contact support if issues persist"
        ),
    },
]
