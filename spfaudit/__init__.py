# -*- coding: utf-8 -*-

"""Audits Sender Policy Framework (SPF) records"""

from __future__ import annotations

import json
import logging
from csv import DictWriter
from io import StringIO
from time import sleep
from typing import Optional, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

import spfaudit._constants
from spfaudit.spf import (
    SPFEvaluationContext,
    SPFEvaluationResult,
    SPFFinding,
    SPFMechanism,
    analyze_spf_record,
    get_qualifier_name,
    lookup_spf_record,
    parse_spf_record,
    validate_spf_record,
)
from spfaudit.utils import get_base_domain, sanitize_domain

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""


__version__ = spfaudit._constants.__version__

__all__ = [
    "SPFEvaluationContext",
    "SPFEvaluationResult",
    "SPFFinding",
    "SPFMechanism",
    "analyze",
    "analyze_domains",
    "analyze_spf_record",
    "get_qualifier_name",
    "lookup_spf_record",
    "output_to_file",
    "parse_spf_record",
    "results_to_csv",
    "results_to_csv_rows",
    "results_to_json",
    "validate_spf_record",
]

analyze = analyze_spf_record


def analyze_domains(
    domains: list[str],
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = spfaudit._constants.DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = spfaudit._constants.DEFAULT_DNS_TIMEOUT_RETRIES,
    wait: float = 0.0,
) -> Union[SPFEvaluationResult, list[SPFEvaluationResult]]:
    """
    Analyzes the SPF records of the given domains

    Args:
        domains (list): A list of domains to check
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        wait (float): number of seconds to wait between processing domains

    Returns:
       A ``dict`` or ``list`` of ``dict`` as returned by
       :func:`spfaudit.spf.analyze_spf_record`
    """
    domains = sorted(
        list(
            set(
                map(
                    lambda d: sanitize_domain(d.rstrip(".\r\n").strip().split(",")[0]),
                    domains,
                )
            )
        )
    )
    not_domains = []
    for domain in domains:
        if "." not in domain:
            not_domains.append(domain)
    for domain in not_domains:
        domains.remove(domain)
    results = []
    for domain in domains:
        logging.debug(f"Checking: {domain}")
        results.append(
            analyze_spf_record(
                domain,
                nameservers=nameservers,
                resolver=resolver,
                timeout=timeout,
                timeout_retries=timeout_retries,
            )
        )
        if wait > 0.0:
            logging.debug(f"Sleeping for {wait} seconds")
            sleep(wait)
    if len(results) == 1:
        results = results[0]

    return results


def results_to_json(
    results: Union[dict[str, object], list[dict[str, object]]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


def _join_findings(findings: list[SPFFinding]) -> str:
    return "|".join(f"{f['severity']}: {f['message']}" for f in findings)


def results_to_csv_rows(
    results: Union[dict, list[dict]],
) -> list[dict]:
    """
    Converts a results dictionary or list of dictionaries and returns a
    list of CSV row dictionaries

    Args:
        results (dict): A dictionary of results

    Returns:
        list: A list of CSV row dictionaries
    """
    rows = []

    if type(results) is dict:
        results = [results]

    for result in results:
        row = {}
        row["domain"] = result["domain"]
        row["base_domain"] = get_base_domain(result["domain"])
        row["valid"] = result["valid"]
        row["record"] = result["record"]
        row["dns_lookups"] = result["dns_lookups"]
        row["void_dns_lookups"] = result["void_dns_lookups"]
        row["mechanisms"] = "|".join(m["original"] for m in result["mechanisms"])
        row["redirect"] = result["modifiers"].get("redirect")
        row["exp"] = result["modifiers"].get("exp")
        row["ipv4"] = "|".join(result["allowed_ips"]["ipv4"])
        row["ipv6"] = "|".join(result["allowed_ips"]["ipv6"])
        row["issues"] = _join_findings(result["issues"])
        row["warnings"] = _join_findings(result["warnings"])
        rows.append(row)
    return rows


def results_to_csv(results: Union[dict, list[dict]]) -> str:
    """
    Converts a dictionary of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    fields = [
        "domain",
        "base_domain",
        "valid",
        "record",
        "dns_lookups",
        "void_dns_lookups",
        "mechanisms",
        "redirect",
        "exp",
        "ipv4",
        "ipv6",
        "issues",
        "warnings",
    ]
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=fields)
    writer.writeheader()
    rows = results_to_csv_rows(results)
    writer.writerows(rows)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
