# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Literal, Optional, TypedDict, Union
from collections.abc import Sequence

import dns.exception
import dns.resolver
from dns.nameserver import Nameserver
import publicsuffixlist
from expiringdict import ExpiringDict

from spfaudit._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DNS_CACHE_MAX_AGE_SECONDS,
    DNS_CACHE_MAX_LEN,
)

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

DNS_CACHE = ExpiringDict(
    max_len=DNS_CACHE_MAX_LEN, max_age_seconds=DNS_CACHE_MAX_AGE_SECONDS
)

UNDECODABLE_TXT_RECORD = "Undecodable characters"

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM
URL_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://")
PSL = publicsuffixlist.PublicSuffixList()

DNSErrorKind = Literal["not_found", "no_data", "refused", "timeout", "other"]


class MXHost(TypedDict):
    hostname: str
    preference: int


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    kind: DNSErrorKind = "other"

    def __init__(self, error: Union[Exception, str], domain: Optional[str] = None):
        """
        Args:
            error: The underlying dnspython exception or a message
            domain (str): The name that was queried
        """
        if isinstance(error, dns.exception.Timeout) and "timeout" in error.kwargs:
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        self.error = error
        self.domain = domain
        Exception.__init__(self, str(error))


class DNSExceptionNXDOMAIN(DNSException):
    """Raised when a NXDOMAIN DNS error (RCODE:3) occurs"""

    kind = "not_found"


class DNSExceptionNoData(DNSException):
    """Raised when the name exists but has no records of the requested type"""

    kind = "no_data"


class DNSExceptionRefused(DNSException):
    """Raised when every nameserver refused or failed (SERVFAIL) the query"""

    kind = "refused"


class DNSExceptionTimeout(DNSException):
    """Raised when a query does not complete within the timeout"""

    kind = "timeout"


def get_base_domain(domain: str) -> str:
    """
    Gets the base domain name for the given domain

    .. note::
        Results are based on a list of public domain suffixes at
        https://publicsuffix.org/list/public_suffix_list.dat.

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: The base domain of the given domain

    """
    domain = normalize_domain(domain)
    return PSL.privatesuffix(domain) or domain


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and the root
    label dot, and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    # 1. Normalize Unicode (NFC form for consistency)
    domain = unicodedata.normalize("NFC", domain)
    # 2. Remove zero-width and similar hidden chars
    domain = ZERO_WIDTH_RE.sub("", domain)
    # 3. Drop the root label so "example.com." and "example.com" are equal
    domain = domain.rstrip(".")
    # 4. Lowercase for case-insensitivity (domains are case-insensitive)
    return domain.lower()


def sanitize_domain(value: str) -> str:
    """
    Turns user input such as ``https://www.Example.com:443/path`` into a
    bare domain name

    Args:
        value (str): A domain, hostname, or URL

    Returns:
        str: A normalized domain name
    """
    domain = normalize_domain(value.strip())
    domain = URL_SCHEME_RE.sub("", domain)
    if domain.startswith("www."):
        domain = domain[4:]
    domain = domain.split("/")[0]
    domain = domain.split(":")[0]
    return domain.rstrip(".")


def query_dns(
    domain: str,
    record_type: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    _attempt: int = 0,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries DNS

    Args:
        domain (str): The domain or subdomain to query about
        record_type (str): The record type to query for
        nameservers (list): A list of one or more nameservers to use
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): Sets the DNS timeout in seconds
        timeout_retries (int): The number of times to reattempt a query after a timeout
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of answers

    Raises:
        :exc:`dns.exception.DNSException`
    """
    domain = normalize_domain(domain)
    record_type = record_type.upper()
    cache_key = f"{domain}_{record_type}"
    if cache is None:
        cache = DNS_CACHE
    if isinstance(cache, ExpiringDict):
        records = cache.get(cache_key)
        if isinstance(records, list):
            return records
    if not resolver:
        resolver = dns.resolver.Resolver()
        timeout = float(timeout)
        if nameservers is not None:
            resolver.nameservers = nameservers
        resolver.timeout = timeout
        resolver.lifetime = timeout
    try:
        answers = resolver.resolve(domain, record_type, lifetime=timeout)
    except dns.resolver.LifetimeTimeout as e:
        _attempt += 1
        if _attempt > timeout_retries:
            raise e
        logging.debug(f"Retrying {record_type} query for {domain} after a timeout")
        return query_dns(
            domain,
            record_type,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            _attempt=_attempt,
            cache=cache,
        )
    if record_type == "TXT":
        # Join each sequence of byte chunks into a single bytes object
        _resource_records = [b"".join(r.strings) for r in answers if r.strings]
        records = []
        for r in _resource_records:
            try:
                r = r.decode()
            except UnicodeDecodeError:
                r = UNDECODABLE_TXT_RECORD
            records.append(r)
    else:
        records = list(
            map(
                lambda r: r.to_text().rstrip("."),
                answers,
            )
        )
    if isinstance(cache, ExpiringDict):
        cache[cache_key] = records

    return records


def _query_records(
    domain: str,
    record_type: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """Runs :func:`query_dns`, translating dnspython errors into the
    :exc:`DNSException` family"""
    try:
        return query_dns(
            domain,
            record_type,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except dns.resolver.NXDOMAIN:
        raise DNSExceptionNXDOMAIN("The domain does not exist.", domain)
    except dns.resolver.NoAnswer:
        raise DNSExceptionNoData(
            f"The domain {domain} does not have any {record_type} records.", domain
        )
    except dns.resolver.NoNameservers as error:
        raise DNSExceptionRefused(error, domain)
    except dns.exception.Timeout as error:
        raise DNSExceptionTimeout(error, domain)
    except dns.exception.DNSException as error:
        raise DNSException(error, domain)


def get_txt_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries DNS for TXT records

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of TXT records

    Raises:
        :exc:`spfaudit.utils.DNSException`

    """
    logging.debug(f"Getting TXT records for {domain}")
    return _query_records(
        domain,
        "TXT",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )


def get_a_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries DNS for A records

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of IPv4 addresses, in the order they were answered

    Raises:
        :exc:`spfaudit.utils.DNSException`
    """
    logging.debug(f"Getting A records for {domain}")
    return _query_records(
        domain,
        "A",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )


def get_aaaa_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries DNS for AAAA records

    Returns:
        list: A list of IPv6 addresses, in the order they were answered

    Raises:
        :exc:`spfaudit.utils.DNSException`
    """
    logging.debug(f"Getting AAAA records for {domain}")
    return _query_records(
        domain,
        "AAAA",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )


def get_mx_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[MXHost]:
    """
    Queries DNS for a list of Mail Exchange hosts

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of ``dicts``; each containing a ``preference``
                        integer and a ``hostname``

    Raises:
        :exc:`spfaudit.utils.DNSException`

    """
    hosts = []
    logging.debug(f"Checking for MX records on {domain}")
    answers = _query_records(
        domain,
        "MX",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )
    if answers == ["0 "]:
        logging.debug('"No Service" MX record found')
        return []
    for record in answers:
        record = record.split(" ")
        preference = int(record[0])
        hostname = record[1].rstrip(".").strip().lower()
        hosts.append({"preference": preference, "hostname": hostname})
    hosts = sorted(hosts, key=lambda h: (h["preference"], h["hostname"]))
    return hosts
