# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record analysis"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Literal, Optional, TypedDict, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver
import pyleri

from spfaudit._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    MAX_DNS_LOOKUPS,
    MAX_INCLUDES,
    MAX_MX_HOSTS,
    MAX_RECORD_BYTES,
    MAX_TXT_STRING_LENGTH,
    MAX_VOID_DNS_LOOKUPS,
    SPF_VERSION_TAG,
    SYNTAX_ERROR_MARKER,
)
from spfaudit.utils import (
    UNDECODABLE_TXT_RECORD,
    DNSException,
    DNSExceptionNoData,
    DNSExceptionNXDOMAIN,
    get_a_records,
    get_aaaa_records,
    get_mx_records,
    get_txt_records,
    normalize_domain,
)

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

SPF_MECHANISMS = ("all", "a", "mx", "ip4", "ip6", "include", "exists", "ptr")
SPF_MODIFIERS = ("redirect", "exp")

spf_qualifiers: dict[str, str] = {
    "+": "Pass",
    "-": "Fail",
    "~": "SoftFail",
    "?": "Neutral",
}

# Detect an 'all' mechanism glued to the previous term without required
# whitespace, e.g., "ip4:203.0.113.7~all".
# We require that the qualifier character (one of + - ~ ?) immediately precedes
# 'all' and that 'all' ends the term (followed by whitespace or end of string),
# so we don't falsely match hostnames like 'foo-all.example'.
CONCATENATED_ALL_REGEX = re.compile(r"\S([+\-~?])all(?=\s|$)", re.IGNORECASE)
ALL_TERM_REGEX = re.compile(r"^[+\-~?]?all$", re.IGNORECASE)
SPLIT_TXT_STRINGS_REGEX = re.compile(r'"\s*"')
MECHANISM_NAME_REGEX = re.compile(r"[:/]")

# domain-spec [ "/" ip4-cidr-length ] [ "//" ip6-cidr-length ]
DUAL_CIDR_REGEX = re.compile(r"^(.*?)(?:/(\d+))?(?://(\d+))?$")

Severity = Literal["critical", "high", "medium", "low", "info"]
MechanismType = Literal["all", "a", "mx", "ip4", "ip6", "include", "exists", "ptr"]
Qualifier = Literal["+", "-", "~", "?"]
QualifierName = Literal["Pass", "Fail", "SoftFail", "Neutral"]


class _SPFMacroStringGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for SPF macro-strings (RFC 7208 § 7.1)"""

    macro_expand = pyleri.Regex(
        r"%\{[slodiphcrtv](?:[1-9][0-9]*)?r?[.\-+,/_=]*\}", re.IGNORECASE
    )
    macro_escape = pyleri.Regex(r"%[%_\-]")
    macro_literal = pyleri.Regex(r"[!-$&-~]+")

    START = pyleri.Repeat(
        pyleri.Choice(macro_expand, macro_escape, macro_literal), mi=1
    )


_MACRO_STRING_GRAMMAR = _SPFMacroStringGrammar()


class SPFFinding(TypedDict):
    severity: Severity
    message: str
    recommendation: str


class SPFMechanism(TypedDict):
    type: Union[MechanismType, str]
    value: Optional[str]
    qualifier: Qualifier
    qualifier_name: QualifierName
    original: str
    domain: str


class SPFAllowedIPs(TypedDict):
    ipv4: list[str]
    ipv6: list[str]


class SPFEvaluationResult(TypedDict):
    domain: str
    record: Optional[str]
    mechanisms: list[SPFMechanism]
    modifiers: dict[str, str]
    allowed_ips: SPFAllowedIPs
    dns_lookups: int
    void_dns_lookups: int
    issues: list[SPFFinding]
    warnings: list[SPFFinding]
    valid: bool


_DNS_FAILURE_FINDINGS: dict[str, tuple[str, str]] = {
    "not_found": (
        "Domain not found: {domain}",
        "Verify the domain name is correct",
    ),
    "no_data": (
        "No TXT records found for {domain}",
        "Add an SPF record to the domain's TXT records",
    ),
    "refused": (
        "DNS servers refused or failed to answer the TXT query for {domain}",
        "Check that the domain's authoritative nameservers are working",
    ),
    "timeout": (
        "DNS lookup timed out for {domain}",
        "Check that the domain's nameservers are reachable and responsive",
    ),
    "other": (
        "DNS lookup failed for {domain}: {error}",
        "Check DNS configuration and network connectivity",
    ),
}


class SPFEvaluationContext:
    """
    State shared by every record visited while analyzing one domain

    A new context is created for each top-level analysis and threaded through
    every recursive ``include`` and ``redirect``, so the DNS lookup budget and
    the set of visited domains cover the whole evaluation tree.
    """

    def __init__(
        self,
        *,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        resolver: Optional[dns.resolver.Resolver] = None,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    ):
        """
        Args:
            nameservers (list): A list of nameservers to query
            resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                              requests
            timeout (float): number of seconds to wait for an answer from DNS
            timeout_retries (int): The number of times to reattempt a query after a timeout
        """
        self.nameservers = nameservers
        self.resolver = resolver
        self.timeout = timeout
        self.timeout_retries = timeout_retries

        self.dns_lookup_count = 0
        self.void_lookup_count = 0
        self.visited_domains: set[str] = set()
        self.allowed_ipv4: list[str] = []
        self.allowed_ipv6: list[str] = []
        self.mechanisms: list[SPFMechanism] = []
        self.modifiers: dict[str, str] = {}
        self.issues: list[SPFFinding] = []
        self.warnings: list[SPFFinding] = []

    @property
    def dns_options(self) -> dict:
        return {
            "nameservers": self.nameservers,
            "resolver": self.resolver,
            "timeout": self.timeout,
            "timeout_retries": self.timeout_retries,
        }

    @property
    def lookup_budget_exhausted(self) -> bool:
        return self.dns_lookup_count >= MAX_DNS_LOOKUPS

    @property
    def valid(self) -> bool:
        return not any(issue["severity"] == "critical" for issue in self.issues)

    def consume_dns_lookup(self) -> bool:
        """
        Takes one unit from the DNS lookup budget

        Returns:
            bool: ``False`` if the budget was already exhausted
        """
        if self.lookup_budget_exhausted:
            return False
        self.dns_lookup_count += 1
        return True

    def add_issue(self, severity: Severity, message: str, recommendation: str):
        self.issues.append(
            {"severity": severity, "message": message, "recommendation": recommendation}
        )

    def add_warning(self, severity: Severity, message: str, recommendation: str):
        self.warnings.append(
            {"severity": severity, "message": message, "recommendation": recommendation}
        )

    def allow_ipv4(self, address: str):
        if address not in self.allowed_ipv4:
            self.allowed_ipv4.append(address)

    def allow_ipv6(self, address: str):
        if address not in self.allowed_ipv6:
            self.allowed_ipv6.append(address)


def get_qualifier_name(qualifier: Optional[str]) -> QualifierName:
    """
    Returns the result name for an SPF qualifier character

    Args:
        qualifier (str): ``+``, ``-``, ``~``, ``?``, or an empty value

    Returns:
        str: ``Pass``, ``Fail``, ``SoftFail``, or ``Neutral``
    """
    return spf_qualifiers[qualifier or "+"]


def _has_version_tag(record: str) -> bool:
    # RFC 7208 § 4.5: the version section ends with a space or the end of
    # the record, so "v=spf10" is not an SPF record
    record = record.lower()
    return record == SPF_VERSION_TAG or record.startswith(f"{SPF_VERSION_TAG} ")


def _unquote_record(record: str) -> str:
    """Concatenates TXT character-strings given as ``"..." "..."``"""
    record = record.strip()
    if record.startswith('"'):
        record = SPLIT_TXT_STRINGS_REGEX.sub("", record).replace('"', "")
    return record


def _split_qualifier(term: str) -> tuple[Qualifier, str]:
    if term[0] in spf_qualifiers:
        return term[0], term[1:]
    return "+", term


def _split_dual_cidr(
    domain_spec: str,
) -> tuple[str, Optional[str], Optional[str]]:
    match = DUAL_CIDR_REGEX.match(domain_spec)
    return match.group(1), match.group(2), match.group(3)


def _is_ip_network(value: str, version: int) -> bool:
    if "/" in value:
        prefix = value.split("/", 1)[1]
        if not (prefix.isascii() and prefix.isdigit()):
            return False
    try:
        network = ipaddress.ip_network(value, strict=False)
    except ValueError:
        return False
    return network.version == version


def _circular_reference(domain: str, context: SPFEvaluationContext):
    logging.debug(f"Circular reference to {domain} detected")
    context.add_warning(
        "medium",
        f"Circular reference detected: {domain}",
        "Remove circular includes to prevent infinite loops",
    )


def _check_macro_string(value: str, domain: str, context: SPFEvaluationContext) -> bool:
    """Warns about invalid SPF macro syntax in a domain-spec"""
    parsed_value = _MACRO_STRING_GRAMMAR.parse(value)
    if parsed_value.is_valid:
        return True
    pos = parsed_value.pos
    marked_value = value[:pos] + SYNTAX_ERROR_MARKER + value[pos:]
    context.add_warning(
        "medium",
        f"{domain}: Invalid SPF macro syntax at position {pos} "
        f"(marked with {SYNTAX_ERROR_MARKER}) in value: {marked_value}",
        "Fix the macro according to RFC 7208 § 7",
    )
    return False


def _macro_not_expanded(
    term_name: str, value: str, domain: str, context: SPFEvaluationContext
):
    if _check_macro_string(value, domain, context):
        context.add_warning(
            "info",
            f"{term_name} target {value} uses SPF macros, which are not expanded",
            "Macro targets can only be evaluated during an SMTP transaction",
        )


def _record_fetch_failure(
    domain: str, error: DNSException, context: SPFEvaluationContext
):
    message, recommendation = _DNS_FAILURE_FINDINGS[error.kind]
    context.add_warning(
        "high", message.format(domain=domain, error=error), recommendation
    )


def lookup_spf_record(
    domain: str, context: SPFEvaluationContext, *, count_void: bool = False
) -> Optional[str]:
    """
    Queries DNS for the SPF record of a domain

    DNS failures and missing records are recorded in the context as warnings;
    multiple SPF records are recorded as a critical issue and the first record
    is returned so the analysis can continue.

    Args:
        domain (str): A domain name
        context (SPFEvaluationContext): The context of the running analysis
        count_void (bool): Count a missing record as a void DNS lookup

    Returns:
        str: The SPF record, or ``None`` if the domain has no SPF record
    """
    domain = normalize_domain(domain)
    try:
        return _query_spf_record(domain, context, count_void=count_void)
    except DNSException as error:
        if count_void and isinstance(error, (DNSExceptionNXDOMAIN, DNSExceptionNoData)):
            context.void_lookup_count += 1
        _record_fetch_failure(domain, error, context)
        return None


def _query_spf_record(
    domain: str, context: SPFEvaluationContext, *, count_void: bool
) -> Optional[str]:
    """Like :func:`lookup_spf_record`, but DNS failures are raised"""
    logging.debug(f"Checking for a SPF record on {domain}")
    answers = get_txt_records(domain, **context.dns_options)

    spf_records = []
    for record in answers:
        if record == UNDECODABLE_TXT_RECORD:
            context.add_warning(
                "low",
                f"A TXT record for {domain} contains undecodable characters",
                "Remove or re-encode the TXT record as ASCII text",
            )
            continue
        if record.lower().startswith(SPF_VERSION_TAG):
            spf_records.append(record)

    if len(spf_records) == 0:
        if count_void:
            context.void_lookup_count += 1
        context.add_warning(
            "high",
            f"No SPF record found for {domain}",
            "Add SPF record to domain TXT records",
        )
        return None
    if len(spf_records) > 1:
        context.add_issue(
            "critical",
            f"Multiple SPF records found for {domain} (RFC 7208 § 3.2)",
            "Consolidate into a single SPF record",
        )
    return spf_records[0]


def _resolve_host(
    hostname: str,
    context: SPFEvaluationContext,
    ip4_cidr: Optional[str] = None,
    ip6_cidr: Optional[str] = None,
):
    """Adds the A and AAAA addresses of a host to the allow-lists"""
    found = False
    a_error = None
    try:
        for address in get_a_records(hostname, **context.dns_options):
            context.allow_ipv4(f"{address}/{ip4_cidr}" if ip4_cidr else address)
            found = True
    except DNSException as error:
        a_error = error

    if not isinstance(a_error, DNSExceptionNXDOMAIN):
        try:
            for address in get_aaaa_records(hostname, **context.dns_options):
                context.allow_ipv6(f"{address}/{ip6_cidr}" if ip6_cidr else address)
                found = True
        except DNSException as error:
            # AAAA records are best effort
            logging.debug(f"AAAA lookup for {hostname} failed: {error}")

    if found:
        return
    if a_error is None or isinstance(
        a_error, (DNSExceptionNXDOMAIN, DNSExceptionNoData)
    ):
        context.void_lookup_count += 1
    reason = str(a_error) if a_error is not None else "no A/AAAA records"
    context.add_warning(
        "medium",
        f"Failed to resolve A record for {hostname}: {reason}",
        "Verify domain exists and has A records",
    )


def _valid_cidr_lengths(
    term: str,
    ip4_cidr: Optional[str],
    ip6_cidr: Optional[str],
    context: SPFEvaluationContext,
) -> bool:
    if (ip4_cidr is None or int(ip4_cidr) <= 32) and (
        ip6_cidr is None or int(ip6_cidr) <= 128
    ):
        return True
    context.add_warning(
        "medium",
        f"Invalid CIDR length in {term}",
        "Use an IPv4 prefix length of 0-32 and an IPv6 prefix length of 0-128",
    )
    return False


def _handle_all(qualifier: Qualifier, context: SPFEvaluationContext):
    if qualifier == "+":
        context.add_issue(
            "critical",
            'Using "+all" allows all senders (extremely insecure)',
            'Change to "-all" (hard fail) or "~all" (soft fail)',
        )
    elif qualifier == "?":
        context.add_warning(
            "medium",
            'Using "?all" provides no protection',
            'Change to "-all" (hard fail) or "~all" (soft fail)',
        )


def _handle_a(term: str, domain_spec: str, domain: str, context: SPFEvaluationContext):
    target, ip4_cidr, ip6_cidr = _split_dual_cidr(domain_spec)
    if not _valid_cidr_lengths(term, ip4_cidr, ip6_cidr, context):
        return
    target = normalize_domain(target) if target else domain
    if not context.consume_dns_lookup():
        logging.debug(f"DNS lookup limit reached, skipping {term}")
        return
    if "%" in target:
        _macro_not_expanded("a", target, domain, context)
        return
    _resolve_host(target, context, ip4_cidr, ip6_cidr)


def _handle_mx(term: str, domain_spec: str, domain: str, context: SPFEvaluationContext):
    target, ip4_cidr, ip6_cidr = _split_dual_cidr(domain_spec)
    if not _valid_cidr_lengths(term, ip4_cidr, ip6_cidr, context):
        return
    target = normalize_domain(target) if target else domain
    if not context.consume_dns_lookup():
        logging.debug(f"DNS lookup limit reached, skipping {term}")
        return
    if "%" in target:
        _macro_not_expanded("mx", target, domain, context)
        return

    try:
        hosts = get_mx_records(target, **context.dns_options)
    except DNSException as error:
        if isinstance(error, (DNSExceptionNXDOMAIN, DNSExceptionNoData)):
            context.void_lookup_count += 1
        context.add_warning(
            "medium",
            f"Failed to resolve MX record for {target}: {error}",
            "Verify domain exists and has MX records",
        )
        return

    if len(hosts) == 0:
        context.void_lookup_count += 1
        context.add_warning(
            "medium",
            f"An mx mechanism points to {target}, which does not accept mail",
            "Remove the mx mechanism or publish MX records for the domain",
        )
        return
    # RFC 7208 § 4.6.4
    if len(hosts) > MAX_MX_HOSTS:
        context.add_warning(
            "medium",
            f"{target} has {len(hosts)} MX hosts; receivers evaluate at most "
            f"{MAX_MX_HOSTS} (RFC 7208 § 4.6.4)",
            "Replace the mx mechanism with ip4/ip6 mechanisms",
        )
    for host in hosts:
        if not context.consume_dns_lookup():
            logging.debug(
                f"DNS lookup limit reached, skipping MX host {host['hostname']}"
            )
            break
        _resolve_host(host["hostname"], context, ip4_cidr, ip6_cidr)


def _handle_ip4(value: Optional[str], context: SPFEvaluationContext):
    if not value:
        context.add_warning(
            "medium",
            "ip4 mechanism missing IP address",
            "Specify IP address in format: ip4:192.0.2.0/24",
        )
        return
    if not _is_ip_network(value, 4):
        context.add_warning(
            "medium",
            f"Invalid IPv4 format: {value}",
            "Use valid IPv4 address or CIDR notation",
        )
        return
    context.allow_ipv4(value)


def _handle_ip6(value: Optional[str], context: SPFEvaluationContext):
    if not value:
        context.add_warning(
            "medium",
            "ip6 mechanism missing IP address",
            "Specify IP address in format: ip6:2001:db8::/32",
        )
        return
    if not _is_ip_network(value, 6):
        context.add_warning(
            "medium",
            f"Invalid IPv6 format: {value}",
            "Use valid IPv6 address or CIDR notation",
        )
        return
    context.allow_ipv6(value)


def _handle_include(value: Optional[str], domain: str, context: SPFEvaluationContext):
    if not value:
        context.add_warning(
            "high",
            "include mechanism missing domain",
            "Specify domain in format: include:_spf.example.com",
        )
        return
    if not context.consume_dns_lookup():
        context.add_issue(
            "high",
            f"DNS lookup limit reached before processing include:{value}",
            "Reduce number of includes and DNS-dependent mechanisms",
        )
        return
    target = normalize_domain(value)
    if "%" in target:
        _macro_not_expanded("include", target, domain, context)
        return
    if target in context.visited_domains:
        _circular_reference(target, context)
        return
    include_record = lookup_spf_record(target, context, count_void=True)
    if include_record is None:
        return
    parse_spf_record(target, include_record, context, is_top_level=False)


def _handle_exists(value: Optional[str], domain: str, context: SPFEvaluationContext):
    if not value:
        context.add_warning(
            "medium",
            "exists mechanism missing domain",
            "Specify domain in format: exists:%{ir}.%{l1r+-}._spf.%{d}",
        )
        return
    if not context.consume_dns_lookup():
        logging.debug(f"DNS lookup limit reached, skipping exists:{value}")
        return
    if "%" in value:
        _check_macro_string(value, domain, context)
    context.add_warning(
        "info",
        f"exists mechanism used: {value}",
        "Ensure macro expansion is correctly configured",
    )


def _handle_ptr(context: SPFEvaluationContext):
    context.add_warning(
        "medium",
        "ptr mechanism is deprecated per RFC 7208",
        "Replace ptr mechanism with explicit ip4/ip6 or include mechanisms",
    )
    if not context.consume_dns_lookup():
        logging.debug("DNS lookup limit reached, not counting ptr")


def _parse_mechanism(
    term: str,
    qualifier: Qualifier,
    text: str,
    domain: str,
    context: SPFEvaluationContext,
):
    mechanism_type = MECHANISM_NAME_REGEX.split(text, maxsplit=1)[0].lower()
    value = text.split(":", 1)[1] if ":" in text else None
    # Everything after the mechanism name, e.g. ":example.com/24" or "//64"
    domain_spec = text[len(mechanism_type) :]
    if domain_spec.startswith(":"):
        domain_spec = domain_spec[1:]

    mechanism: SPFMechanism = {
        "type": mechanism_type,
        "value": value or None,
        "qualifier": qualifier,
        "qualifier_name": get_qualifier_name(qualifier),
        "original": term,
        "domain": domain,
    }
    context.mechanisms.append(mechanism)
    logging.debug(f"{domain}: evaluating {term}")

    if mechanism_type == "all":
        _handle_all(qualifier, context)
    elif mechanism_type == "a":
        _handle_a(term, domain_spec, domain, context)
    elif mechanism_type == "mx":
        _handle_mx(term, domain_spec, domain, context)
    elif mechanism_type == "ip4":
        _handle_ip4(value, context)
    elif mechanism_type == "ip6":
        _handle_ip6(value, context)
    elif mechanism_type == "include":
        _handle_include(value, domain, context)
    elif mechanism_type == "exists":
        _handle_exists(value, domain, context)
    elif mechanism_type == "ptr":
        _handle_ptr(context)
    else:
        context.add_warning(
            "low",
            f"Unknown mechanism: {mechanism_type}",
            "Verify mechanism syntax according to RFC 7208",
        )


def _follow_redirect(
    value: str, domain: str, context: SPFEvaluationContext, *, is_top_level: bool
):
    if not context.consume_dns_lookup():
        logging.debug(f"DNS lookup limit reached, not following redirect={value}")
        return
    target = normalize_domain(value)
    if "%" in target:
        _macro_not_expanded("redirect", target, domain, context)
        return
    if target in context.visited_domains:
        _circular_reference(target, context)
        return
    try:
        redirect_record = _query_spf_record(target, context, count_void=True)
    except DNSException as error:
        if isinstance(error, (DNSExceptionNXDOMAIN, DNSExceptionNoData)):
            context.void_lookup_count += 1
        _record_fetch_failure(target, error, context)
        context.add_warning(
            "high",
            f"Failed to resolve redirect domain: {value}",
            "Verify redirect domain is valid and has an SPF record",
        )
        return
    if redirect_record is None:
        return
    # The redirect target stands in for the record that contains it
    parse_spf_record(target, redirect_record, context, is_top_level=is_top_level)


def _parse_modifier(
    text: str,
    domain: str,
    context: SPFEvaluationContext,
    *,
    is_top_level: bool,
    record_has_all: bool,
    seen_modifiers: set[str],
):
    name, _, value = text.partition("=")
    name = name.lower()
    if name not in SPF_MODIFIERS:
        context.add_warning(
            "low",
            f"Unknown modifier: {name}",
            "Verify modifier syntax according to RFC 7208",
        )
        return

    if name in seen_modifiers:
        context.add_warning(
            "medium",
            f"Multiple {name} modifiers in the SPF record for {domain}",
            f"Use the {name} modifier at most once per record (RFC 7208 § 6)",
        )
    seen_modifiers.add(name)
    if is_top_level:
        context.modifiers[name] = value

    if name == "exp":
        # The explanation is only shown after a fail result, so it is never
        # resolved here
        if not value:
            context.add_warning(
                "medium",
                "exp modifier missing domain",
                "Specify domain in format: exp=explain._spf.example.com",
            )
        elif "%" in value:
            _check_macro_string(value, domain, context)
        return

    if not value:
        context.add_warning(
            "medium",
            "redirect modifier missing domain",
            "Specify domain in format: redirect=_spf.example.com",
        )
        return
    if record_has_all:
        context.add_warning(
            "low",
            f"redirect={value} is ignored by receivers because the SPF record "
            f"for {domain} contains an all mechanism",
            "Remove either the redirect modifier or the all mechanism",
        )
    _follow_redirect(value, domain, context, is_top_level=is_top_level)


def parse_spf_record(
    domain: str,
    record: str,
    context: SPFEvaluationContext,
    *,
    is_top_level: bool = True,
) -> bool:
    """
    Parses an SPF record, resolving ``a``, ``mx``, ``include`` and
    ``redirect`` references into the given context

    Terms are evaluated strictly left to right. Every DNS-dependent term takes
    one unit of the shared lookup budget, and is skipped once the budget is
    spent.

    Args:
        domain (str): The domain that the SPF record came from
        record (str): An SPF record
        context (SPFEvaluationContext): The context of the running analysis
        is_top_level (bool): The record is the analyzed domain's own record
                             (or a redirect target of it) rather than an
                             included record

    Returns:
        bool: ``True`` if the record was parsed, ``False`` if it was skipped
        because of a circular reference or a missing version tag
    """
    domain = normalize_domain(domain)
    if domain in context.visited_domains:
        _circular_reference(domain, context)
        return False
    context.visited_domains.add(domain)
    logging.debug(f"Parsing the SPF record on {domain}")

    record = _unquote_record(record)
    if not _has_version_tag(record):
        context.add_issue(
            "critical",
            f'Invalid SPF record for {domain}: must start with "{SPF_VERSION_TAG}"',
            f'Ensure SPF record starts with "{SPF_VERSION_TAG}" followed by a space',
        )
        return False

    concatenated_all = CONCATENATED_ALL_REGEX.search(record)
    if concatenated_all:
        pos = concatenated_all.start(1)
        marked_record = record[:pos] + SYNTAX_ERROR_MARKER + record[pos:]
        context.add_warning(
            "medium",
            f"{domain}: Expected whitespace before 'all' at position {pos} "
            f"(marked with {SYNTAX_ERROR_MARKER}) in: {marked_record}",
            "Separate every SPF term with a space",
        )

    terms = record.split()[1:]
    record_has_all = any(ALL_TERM_REGEX.match(term) for term in terms)
    seen_modifiers: set[str] = set()
    all_count = 0
    warned_after_all = False
    for term in terms:
        qualifier, text = _split_qualifier(term)
        if "=" in text and not text.lower().startswith(("ip4:", "ip6:")):
            _parse_modifier(
                text,
                domain,
                context,
                is_top_level=is_top_level,
                record_has_all=record_has_all,
                seen_modifiers=seen_modifiers,
            )
            continue

        if all_count > 0 and not warned_after_all:
            warned_after_all = True
            context.add_warning(
                "low",
                f"Mechanisms after the all mechanism in the SPF record for "
                f"{domain} are never evaluated",
                "Move the all mechanism to the end of the record",
            )
        if ALL_TERM_REGEX.match(term):
            all_count += 1
            if all_count == 2:
                context.add_warning(
                    "medium",
                    f"The all mechanism is used more than once in the SPF "
                    f"record for {domain}",
                    "Use a single all mechanism at the end of the record",
                )
        _parse_mechanism(term, qualifier, text, domain, context)

    return True


def validate_spf_record(context: SPFEvaluationContext, record: str):
    """
    Runs the structural checks that need the fully parsed evaluation tree

    Args:
        context (SPFEvaluationContext): The context of a finished parse
        record (str): The raw top-level SPF record
    """
    # RFC 7208 § 4.6.4
    if context.dns_lookup_count > MAX_DNS_LOOKUPS:
        context.add_issue(
            "critical",
            f"Exceeded maximum DNS lookups "
            f"({context.dns_lookup_count}/{MAX_DNS_LOOKUPS})",
            "Reduce includes, MX, A, and EXISTS mechanisms to stay under "
            f"{MAX_DNS_LOOKUPS} lookups",
        )
    elif context.dns_lookup_count == MAX_DNS_LOOKUPS:
        context.add_warning(
            "high",
            f"Reached maximum DNS lookups ({MAX_DNS_LOOKUPS})",
            "Consider reducing includes to avoid hitting the limit",
        )

    if context.void_lookup_count > MAX_VOID_DNS_LOOKUPS:
        context.add_issue(
            "high",
            f"Too many void DNS lookups "
            f"({context.void_lookup_count}/{MAX_VOID_DNS_LOOKUPS}) - "
            "(RFC 7208 § 4.6.4)",
            "Remove mechanisms that point to domains without records",
        )

    if not any(mechanism["type"] == "all" for mechanism in context.mechanisms):
        context.add_warning(
            "medium",
            'SPF record does not have an "all" mechanism',
            'Add "-all" or "~all" at the end of your SPF record',
        )

    # RFC 7208 § 3.3
    if len(record) > MAX_TXT_STRING_LENGTH:
        context.add_warning(
            "high",
            f"SPF record length ({len(record)}) exceeds single DNS string "
            f"limit ({MAX_TXT_STRING_LENGTH})",
            "Split into multiple strings or use includes to reduce length",
        )
    # RFC 7208 § 3.4
    record_bytes = len(record.encode("utf-8"))
    if record_bytes > MAX_RECORD_BYTES:
        context.add_warning(
            "medium",
            f"SPF record is {record_bytes} bytes, which exceeds the reliable "
            f"UDP response size ({MAX_RECORD_BYTES} bytes)",
            "Shorten the record so some verifiers do not ignore it",
        )

    include_count = len(
        [mechanism for mechanism in context.mechanisms if mechanism["type"] == "include"]
    )
    if include_count > MAX_INCLUDES:
        context.add_warning(
            "medium",
            f"High number of includes ({include_count}) may cause performance issues",
            "Consider consolidating includes or using direct IP addresses",
        )


def _build_result(
    domain: str, record: Optional[str], context: SPFEvaluationContext, valid: bool
) -> SPFEvaluationResult:
    results: SPFEvaluationResult = {
        "domain": domain,
        "record": record,
        "mechanisms": list(context.mechanisms),
        "modifiers": dict(context.modifiers),
        "allowed_ips": {
            "ipv4": list(context.allowed_ipv4),
            "ipv6": list(context.allowed_ipv6),
        },
        "dns_lookups": context.dns_lookup_count,
        "void_dns_lookups": context.void_lookup_count,
        "issues": list(context.issues),
        "warnings": list(context.warnings),
        "valid": valid,
    }
    return results


def analyze_spf_record(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> SPFEvaluationResult:
    """
    Fetches, parses, and audits the SPF record of a domain

    DNS failures and policy problems never raise; they are reported in the
    ``issues`` and ``warnings`` of the result.

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``domain`` - The analyzed domain
            - ``record`` - The SPF record string, or ``None``
            - ``mechanisms`` - Every mechanism found, including those of
              included records, in discovery order
            - ``modifiers`` - The ``redirect`` and ``exp`` modifier values
            - ``allowed_ips`` - ``ipv4`` and ``ipv6`` lists of authorized
              addresses and networks
            - ``dns_lookups`` - The number of DNS-dependent terms evaluated
            - ``void_dns_lookups`` - The number of lookups with no answer
            - ``issues`` - A ``list`` of issues
            - ``warnings`` - A ``list`` of warnings
            - ``valid`` - ``False`` if no SPF record was found or a critical
              issue was recorded
    """
    domain = normalize_domain(domain)
    context = SPFEvaluationContext(
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )
    record = lookup_spf_record(domain, context)
    if record is None:
        return _build_result(domain, None, context, valid=False)

    if parse_spf_record(domain, record, context, is_top_level=True):
        validate_spf_record(context, record)

    return _build_result(domain, record, context, valid=context.valid)
