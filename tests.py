#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import csv
import json
import unittest
from io import StringIO

import dns.exception
import dns.resolver

import spfaudit
import spfaudit.spf
import spfaudit.utils


class _TXTRdata:
    def __init__(self, *strings):
        self.strings = [s.encode() if isinstance(s, str) else s for s in strings]


class _Rdata:
    def __init__(self, text):
        self.text = text

    def to_text(self):
        return self.text


class FakeResolver:
    """Answers queries from a dictionary of ``(name, type)`` keys.

    Values are lists of answers (a tuple is a TXT record made of several
    character-strings) or a dnspython exception to raise. Names without any
    key raise NXDOMAIN; known names without the requested type raise
    NoAnswer.
    """

    def __init__(self, zone):
        self.zone = zone
        self.queries = []

    def resolve(self, qname, rdtype, lifetime=None):
        self.queries.append((qname, rdtype))
        key = (qname, rdtype)
        if key not in self.zone:
            if any(name == qname for name, _ in self.zone):
                raise dns.resolver.NoAnswer()
            raise dns.resolver.NXDOMAIN()
        answer = self.zone[key]
        if isinstance(answer, Exception):
            raise answer
        if rdtype == "TXT":
            return [
                _TXTRdata(*r) if isinstance(r, tuple) else _TXTRdata(r)
                for r in answer
            ]
        return [_Rdata(r) for r in answer]


class _BrokenResolver:
    def resolve(self, qname, rdtype, lifetime=None):
        raise RuntimeError("resolver unavailable")


def _messages(findings):
    return [finding["message"] for finding in findings]


class Test(unittest.TestCase):
    def setUp(self):
        spfaudit.utils.DNS_CACHE.clear()

    def analyze(self, domain, zone, **kwargs):
        self.resolver = FakeResolver(zone)
        return spfaudit.analyze(domain, resolver=self.resolver, **kwargs)

    def testHardFailOnly(self):
        """A record with only -all has one mechanism and no findings"""
        results = self.analyze("example.com", {("example.com", "TXT"): ["v=spf1 -all"]})

        self.assertEqual(
            results["mechanisms"],
            [
                {
                    "type": "all",
                    "value": None,
                    "qualifier": "-",
                    "qualifier_name": "Fail",
                    "original": "-all",
                    "domain": "example.com",
                }
            ],
        )
        self.assertEqual(results["record"], "v=spf1 -all")
        self.assertEqual(results["dns_lookups"], 0)
        self.assertEqual(results["issues"], [])
        self.assertEqual(results["warnings"], [])
        self.assertTrue(results["valid"])

    def testPlusAll(self):
        """+all is a critical issue that invalidates the record"""
        results = self.analyze("example.com", {("example.com", "TXT"): ["v=spf1 +all"]})

        self.assertEqual(len(results["issues"]), 1)
        self.assertEqual(results["issues"][0]["severity"], "critical")
        self.assertIn("allows all senders", results["issues"][0]["message"])
        self.assertFalse(results["valid"])

    def testNeutralAll(self):
        """?all is a medium warning"""
        results = self.analyze("example.com", {("example.com", "TXT"): ["v=spf1 ?all"]})

        self.assertEqual(results["issues"], [])
        self.assertEqual(len(results["warnings"]), 1)
        self.assertEqual(results["warnings"][0]["severity"], "medium")
        self.assertTrue(results["valid"])

    def testQualifierNames(self):
        """Every qualifier maps to one result name, and no qualifier is Pass"""
        self.assertEqual(spfaudit.get_qualifier_name("+"), "Pass")
        self.assertEqual(spfaudit.get_qualifier_name("-"), "Fail")
        self.assertEqual(spfaudit.get_qualifier_name("~"), "SoftFail")
        self.assertEqual(spfaudit.get_qualifier_name("?"), "Neutral")
        self.assertEqual(spfaudit.get_qualifier_name(""), "Pass")
        self.assertEqual(spfaudit.get_qualifier_name(None), "Pass")

        results = self.analyze(
            "example.com",
            {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1 ~ip4:192.0.2.2 -all"]},
        )
        mechanisms = results["mechanisms"]
        self.assertEqual(mechanisms[0]["qualifier"], "+")
        self.assertEqual(mechanisms[0]["qualifier_name"], "Pass")
        self.assertEqual(mechanisms[1]["qualifier"], "~")
        self.assertEqual(mechanisms[1]["qualifier_name"], "SoftFail")

    def testTooManyIncludes(self):
        """The eleventh include is blocked before its record is fetched"""
        include_domains = [f"{letter}.com" for letter in "abcdefghijk"]
        record = "v=spf1 {} -all".format(
            " ".join(f"include:{d}" for d in include_domains)
        )
        zone = {("example.com", "TXT"): [record]}
        for include_domain in include_domains:
            zone[(include_domain, "TXT")] = ["v=spf1 -all"]

        results = self.analyze("example.com", zone)

        self.assertEqual(results["dns_lookups"], 10)
        self.assertEqual(len(results["issues"]), 1)
        self.assertEqual(results["issues"][0]["severity"], "high")
        self.assertIn("include:k.com", results["issues"][0]["message"])
        self.assertNotIn(("k.com", "TXT"), self.resolver.queries)
        self.assertIn("j.com", [m["domain"] for m in results["mechanisms"]])
        warnings = _messages(results["warnings"])
        self.assertIn("Reached maximum DNS lookups (10)", warnings)
        self.assertTrue(any("High number of includes (11)" in w for w in warnings))
        self.assertTrue(results["valid"])

    def testExceededLookupBudgetIsCritical(self):
        """A lookup count over the budget is a critical issue"""
        context = spfaudit.SPFEvaluationContext()
        context.dns_lookup_count = 11
        spfaudit.validate_spf_record(context, "v=spf1 -all")

        self.assertIn("Exceeded maximum DNS lookups (11/10)", _messages(context.issues))
        self.assertFalse(context.valid)

    def testLookupBudgetStopsDispatch(self):
        """Once the budget is spent, DNS mechanisms are not dispatched"""
        context = spfaudit.SPFEvaluationContext(resolver=FakeResolver({}))
        context.dns_lookup_count = 10

        spfaudit.parse_spf_record(
            "example.com", "v=spf1 a mx exists:example.net ptr -all", context
        )

        self.assertEqual(context.dns_lookup_count, 10)
        self.assertEqual(context.resolver.queries, [])
        self.assertEqual(len(context.mechanisms), 5)

    def testMXHostsShareTheLookupBudget(self):
        """Each MX host resolution takes one lookup from the shared budget"""
        a_terms = " ".join(f"a:h{i}.example.com" for i in range(1, 9))
        zone = {("example.com", "TXT"): [f"v=spf1 {a_terms} mx -all"]}
        for i in range(1, 9):
            zone[(f"h{i}.example.com", "A")] = [f"192.0.2.{i}"]
        zone[("example.com", "MX")] = [
            "10 m1.example.com.",
            "20 m2.example.com.",
            "30 m3.example.com.",
        ]
        zone[("m1.example.com", "A")] = ["198.51.100.1"]
        zone[("m2.example.com", "A")] = ["198.51.100.2"]
        zone[("m3.example.com", "A")] = ["198.51.100.3"]

        results = self.analyze("example.com", zone)

        self.assertEqual(results["dns_lookups"], 10)
        self.assertIn("198.51.100.1", results["allowed_ips"]["ipv4"])
        self.assertNotIn("198.51.100.2", results["allowed_ips"]["ipv4"])
        self.assertNotIn(("m2.example.com", "A"), self.resolver.queries)
        self.assertNotIn(("m3.example.com", "A"), self.resolver.queries)

    def testSelfInclude(self):
        """A record that includes itself stops at the circular reference"""
        zone = {("x.com", "TXT"): ["v=spf1 include:x.com -all"]}

        results = self.analyze("x.com", zone)

        self.assertEqual(_messages(results["warnings"]), ["Circular reference detected: x.com"])
        self.assertEqual(results["warnings"][0]["severity"], "medium")
        self.assertEqual([m["type"] for m in results["mechanisms"]], ["include", "all"])
        self.assertEqual(results["dns_lookups"], 1)
        self.assertTrue(results["valid"])

    def testTransitiveIncludeLoop(self):
        """Transitive include loops terminate and visit each domain once"""
        zone = {
            ("a.example", "TXT"): ["v=spf1 include:b.example -all"],
            ("b.example", "TXT"): ["v=spf1 include:a.example ~all"],
        }
        context = spfaudit.SPFEvaluationContext(resolver=FakeResolver(zone))

        parsed = spfaudit.parse_spf_record(
            "a.example", "v=spf1 include:b.example -all", context
        )

        self.assertTrue(parsed)
        self.assertEqual(context.visited_domains, {"a.example", "b.example"})
        self.assertIn("Circular reference detected: a.example", _messages(context.warnings))
        self.assertEqual([m["type"] for m in context.mechanisms], ["include", "include", "all", "all"])

    def testMalformedIPv4(self):
        """Malformed ip4 values are reported and not allowed"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.0/24 ip4:not-an-ip -all"]}

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.0/24"])
        self.assertEqual(len(results["warnings"]), 1)
        self.assertEqual(results["warnings"][0]["severity"], "medium")
        self.assertIn("not-an-ip", results["warnings"][0]["message"])
        self.assertEqual(results["dns_lookups"], 0)

    def testIPv6(self):
        """ip6 values are validated with the address family in mind"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 ip6:2001:db8::/32 ip6:zz::1 ip4:2001:db8::1 "
                "ip4:192.0.2.0/33 ip6: -all"
            ]
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv6"], ["2001:db8::/32"])
        self.assertEqual(results["allowed_ips"]["ipv4"], [])
        warnings = _messages(results["warnings"])
        self.assertIn("Invalid IPv6 format: zz::1", warnings)
        self.assertIn("Invalid IPv4 format: 2001:db8::1", warnings)
        self.assertIn("Invalid IPv4 format: 192.0.2.0/33", warnings)
        self.assertIn("ip6 mechanism missing IP address", warnings)
        self.assertEqual(results["mechanisms"][0]["value"], "2001:db8::/32")

    def testAllowedAddressesAreDeduplicated(self):
        """Addresses keep discovery order and appear once"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 ip4:192.0.2.2 include:inc.example.com ip4:192.0.2.1 -all"
            ],
            ("inc.example.com", "TXT"): ["v=spf1 ip4:192.0.2.1 ip4:192.0.2.2 -all"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.2", "192.0.2.1"])

    def testMultipleSPFRecords(self):
        """Multiple SPF records are critical, but the first one is analyzed"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 ip4:192.0.2.1 -all",
                "google-site-verification=abc123",
                "v=spf1 -all",
            ]
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(len(results["issues"]), 1)
        self.assertEqual(results["issues"][0]["severity"], "critical")
        self.assertIn("Multiple SPF records", results["issues"][0]["message"])
        self.assertEqual(results["record"], "v=spf1 ip4:192.0.2.1 -all")
        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.1"])
        self.assertFalse(results["valid"])

    def testInvalidVersionTag(self):
        """A record without a proper version section stops with one critical issue"""
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["v=spf10 ip4:192.0.2.1 -all"]}
        )

        self.assertFalse(results["valid"])
        self.assertEqual(results["mechanisms"], [])
        self.assertEqual(results["allowed_ips"], {"ipv4": [], "ipv6": []})
        self.assertEqual(len(results["issues"]), 1)
        self.assertEqual(results["issues"][0]["severity"], "critical")
        self.assertEqual(results["warnings"], [])

        context = spfaudit.SPFEvaluationContext()
        self.assertFalse(
            spfaudit.parse_spf_record("example.com", "spf1 ip4:192.0.2.1 -all", context)
        )
        self.assertEqual(context.mechanisms, [])
        self.assertEqual(len(context.issues), 1)

    def testUppercaseRecord(self):
        """Version tags and mechanism names are case-insensitive"""
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["V=SPF1 IP4:192.0.2.1 -ALL"]}
        )

        self.assertEqual([m["type"] for m in results["mechanisms"]], ["ip4", "all"])
        self.assertEqual(results["warnings"], [])

    def testNoSPFRecord(self):
        """A domain without an SPF record is reported, not raised"""
        results = self.analyze(
            "example.com",
            {("example.com", "TXT"): ["google-site-verification=abc123"]},
        )

        self.assertIsNone(results["record"])
        self.assertFalse(results["valid"])
        self.assertEqual(results["mechanisms"], [])
        self.assertEqual(results["issues"], [])
        self.assertEqual(_messages(results["warnings"]), ["No SPF record found for example.com"])
        self.assertEqual(results["warnings"][0]["severity"], "high")

    def testDNSFailureKinds(self):
        """Each kind of DNS failure has its own message"""
        cases = {
            "missing.example": (
                dns.resolver.NXDOMAIN(),
                "Domain not found: missing.example",
            ),
            "nodata.example": (
                dns.resolver.NoAnswer(),
                "No TXT records found for nodata.example",
            ),
            "refused.example": (
                dns.resolver.NoNameservers(),
                "DNS servers refused or failed to answer the TXT query for "
                "refused.example",
            ),
            "slow.example": (
                dns.exception.Timeout(),
                "DNS lookup timed out for slow.example",
            ),
            "odd.example": (
                dns.resolver.YXDOMAIN(),
                "DNS lookup failed for odd.example: ",
            ),
        }
        for domain, (error, message) in cases.items():
            results = self.analyze(domain, {(domain, "TXT"): error})
            self.assertIsNone(results["record"])
            self.assertFalse(results["valid"])
            self.assertEqual(len(results["warnings"]), 1)
            self.assertTrue(
                results["warnings"][0]["message"].startswith(message),
                results["warnings"][0]["message"],
            )
            self.assertEqual(results["warnings"][0]["severity"], "high")

    def testTimeoutRetries(self):
        """Queries that time out are retried before they are reported"""
        error = dns.resolver.LifetimeTimeout(timeout=5.0, errors=[])
        results = self.analyze(
            "slow.example", {("slow.example", "TXT"): error}, timeout_retries=2
        )

        self.assertEqual(len(self.resolver.queries), 3)
        self.assertEqual(
            _messages(results["warnings"]), ["DNS lookup timed out for slow.example"]
        )

    def testUnexpectedFaultsPropagate(self):
        """Non-DNS failures of the resolver are not turned into warnings"""
        self.assertRaises(
            RuntimeError,
            spfaudit.analyze,
            "example.com",
            resolver=_BrokenResolver(),
        )

    def testAMechanism(self):
        """Addresses of a mechanisms are allowed, with optional prefixes"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a a:mail.example.com/24//64 -all"],
            ("example.com", "A"): ["192.0.2.1"],
            ("example.com", "AAAA"): ["2001:db8::1"],
            ("mail.example.com", "A"): ["192.0.2.25"],
            ("mail.example.com", "AAAA"): ["2001:db8::25"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.1", "192.0.2.25/24"])
        self.assertEqual(results["allowed_ips"]["ipv6"], ["2001:db8::1", "2001:db8::25/64"])
        self.assertEqual(results["dns_lookups"], 2)
        self.assertEqual(results["mechanisms"][1]["value"], "mail.example.com/24//64")
        self.assertEqual(results["warnings"], [])

    def testAMechanismIPv6Only(self):
        """A host with only AAAA records is not reported as a failure"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a:v6.example.com -all"],
            ("v6.example.com", "AAAA"): ["2001:db8::6"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv6"], ["2001:db8::6"])
        self.assertEqual(results["warnings"], [])
        self.assertEqual(results["void_dns_lookups"], 0)

    def testAMechanismFailure(self):
        """An a mechanism pointing to a missing host is a medium warning"""
        zone = {("example.com", "TXT"): ["v=spf1 a:gone.example.com -all"]}

        results = self.analyze("example.com", zone)

        self.assertEqual(len(results["warnings"]), 1)
        self.assertEqual(results["warnings"][0]["severity"], "medium")
        self.assertIn("gone.example.com", results["warnings"][0]["message"])
        self.assertEqual(results["void_dns_lookups"], 1)
        self.assertEqual(results["dns_lookups"], 1)
        self.assertNotIn(("gone.example.com", "AAAA"), self.resolver.queries)

    def testInvalidCIDRLength(self):
        """Out of range prefix lengths on a and mx are reported"""
        zone = {("example.com", "TXT"): ["v=spf1 a/33 mx//129 -all"]}

        results = self.analyze("example.com", zone)

        warnings = _messages(results["warnings"])
        self.assertIn("Invalid CIDR length in a/33", warnings)
        self.assertIn("Invalid CIDR length in mx//129", warnings)
        self.assertEqual(results["dns_lookups"], 0)

    def testMXMechanism(self):
        """Addresses of every MX host are allowed"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx -all"],
            ("example.com", "MX"): ["20 mx2.example.com.", "10 mx1.example.com."],
            ("mx1.example.com", "A"): ["192.0.2.10"],
            ("mx2.example.com", "A"): ["192.0.2.20"],
            ("mx2.example.com", "AAAA"): ["2001:db8::20"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.10", "192.0.2.20"])
        self.assertEqual(results["allowed_ips"]["ipv6"], ["2001:db8::20"])
        self.assertEqual(results["dns_lookups"], 3)
        self.assertEqual(results["warnings"], [])

    def testMXMechanismFailures(self):
        """Missing and null MX records are reported as medium warnings"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx:nomx.example.com mx:null.example.com -all"],
            ("nomx.example.com", "A"): ["192.0.2.1"],
            ("null.example.com", "MX"): ["0 ."],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(len(results["warnings"]), 2)
        self.assertIn("nomx.example.com", results["warnings"][0]["message"])
        self.assertIn("does not accept mail", results["warnings"][1]["message"])
        self.assertEqual(results["void_dns_lookups"], 2)
        self.assertEqual(results["allowed_ips"]["ipv4"], [])

    def testTooManyMXHosts(self):
        """More than ten MX hosts is reported"""
        hosts = [f"{i} mx{i}.example.com." for i in range(1, 12)]
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx -all"],
            ("example.com", "MX"): hosts,
        }
        for i in range(1, 12):
            zone[(f"mx{i}.example.com", "A")] = [f"192.0.2.{i}"]

        results = self.analyze("example.com", zone)

        self.assertTrue(
            any("has 11 MX hosts" in w for w in _messages(results["warnings"]))
        )
        self.assertEqual(results["dns_lookups"], 10)
        self.assertEqual(len(results["allowed_ips"]["ipv4"]), 9)

    def testIncludeWithoutValue(self):
        """An include without a domain is a high warning and costs nothing"""
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["v=spf1 include: -all"]}
        )

        self.assertIn("include mechanism missing domain", _messages(results["warnings"]))
        self.assertEqual(results["dns_lookups"], 0)

    def testIncludeMissingSPF(self):
        """Included domains without SPF records are reported as void lookups"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 include:nospf.example.com include:gone.example.com -all"
            ],
            ("nospf.example.com", "TXT"): ["some other text"],
        }

        results = self.analyze("example.com", zone)

        warnings = _messages(results["warnings"])
        self.assertIn("No SPF record found for nospf.example.com", warnings)
        self.assertIn("Domain not found: gone.example.com", warnings)
        self.assertEqual(results["void_dns_lookups"], 2)
        self.assertEqual(results["dns_lookups"], 2)

    def testIncludedModifiersAreNotStored(self):
        """Only modifiers of the top-level record are reported"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 include:inc.example.com -all"],
            ("inc.example.com", "TXT"): [
                "v=spf1 ip4:192.0.2.1 exp=explain.inc.example.com ~all"
            ],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["modifiers"], {})
        self.assertEqual(results["mechanisms"][1]["domain"], "inc.example.com")
        self.assertNotIn(("explain.inc.example.com", "TXT"), self.resolver.queries)

    def testRedirect(self):
        """redirect targets are parsed in place of the top-level record"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 redirect=_spf.example.com"],
            ("_spf.example.com", "TXT"): ["v=spf1 ip4:198.51.100.0/24 -all"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["modifiers"], {"redirect": "_spf.example.com"})
        self.assertEqual(results["allowed_ips"]["ipv4"], ["198.51.100.0/24"])
        self.assertEqual(results["dns_lookups"], 1)
        self.assertEqual(
            [m["domain"] for m in results["mechanisms"]],
            ["_spf.example.com", "_spf.example.com"],
        )
        self.assertEqual(results["issues"], [])
        self.assertEqual(results["warnings"], [])

    def testRedirectWithAll(self):
        """redirect is followed even when the record has an all mechanism"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 -all redirect=_spf.example.com"],
            ("_spf.example.com", "TXT"): ["v=spf1 ip4:198.51.100.1 -all"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["allowed_ips"]["ipv4"], ["198.51.100.1"])
        self.assertTrue(
            any("is ignored by receivers" in w for w in _messages(results["warnings"]))
        )

    def testRedirectFailures(self):
        """Redirect loops and missing targets are reported"""
        zone = {
            ("a.example", "TXT"): ["v=spf1 redirect=b.example"],
            ("b.example", "TXT"): ["v=spf1 redirect=a.example"],
        }
        results = self.analyze("a.example", zone)
        self.assertIn("Circular reference detected: a.example", _messages(results["warnings"]))
        self.assertEqual(results["dns_lookups"], 2)

        spfaudit.utils.DNS_CACHE.clear()
        zone = {("example.com", "TXT"): ["v=spf1 redirect=nowhere.example"]}
        results = self.analyze("example.com", zone)
        warnings = _messages(results["warnings"])
        self.assertIn("Domain not found: nowhere.example", warnings)
        self.assertIn("Failed to resolve redirect domain: nowhere.example", warnings)

    def testRedirectTargetWithoutSPF(self):
        """A redirect target without an SPF record is reported once"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 redirect=_spf.example.com"],
            ("_spf.example.com", "TXT"): ["some other text"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(
            _messages(results["warnings"]),
            [
                "No SPF record found for _spf.example.com",
                'SPF record does not have an "all" mechanism',
            ],
        )
        self.assertEqual(results["void_dns_lookups"], 1)

    def testRedirectOverLookupBudget(self):
        """A redirect is not followed once the lookup budget is spent"""
        context = spfaudit.SPFEvaluationContext(resolver=FakeResolver({}))
        context.dns_lookup_count = 10

        spfaudit.parse_spf_record(
            "example.com", "v=spf1 redirect=_spf.example.com", context
        )

        self.assertEqual(context.issues, [])
        self.assertEqual(context.warnings, [])
        self.assertEqual(context.resolver.queries, [])
        self.assertEqual(context.dns_lookup_count, 10)
        self.assertEqual(context.modifiers, {"redirect": "_spf.example.com"})

    def testRedirectInsideInclude(self):
        """Modifiers of an included record's redirect target are not stored"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 exp=explain.example.com include:inc.example -all"
            ],
            ("inc.example", "TXT"): ["v=spf1 redirect=target.example"],
            ("target.example", "TXT"): [
                "v=spf1 ip4:192.0.2.9 exp=other.example redirect=next.example"
            ],
            ("next.example", "TXT"): ["v=spf1 ~all"],
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["modifiers"], {"exp": "explain.example.com"})
        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.9"])
        self.assertEqual(results["dns_lookups"], 3)

    def testTrailingDotDomains(self):
        """A domain spelled with a trailing dot is the same domain"""
        zone = {("x.com", "TXT"): ["v=spf1 include:x.com. -all"]}

        results = self.analyze("x.com.", zone)

        self.assertEqual(results["domain"], "x.com")
        self.assertEqual([m["domain"] for m in results["mechanisms"]], ["x.com", "x.com"])
        self.assertEqual(results["dns_lookups"], 1)
        self.assertEqual(
            _messages(results["warnings"]), ["Circular reference detected: x.com"]
        )
        self.assertEqual(spfaudit.utils.normalize_domain("Example.COM."), "example.com")

    def testDuplicateModifiers(self):
        """Modifiers may only appear once per record"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 -all exp=one.example.com exp=two.example.com"
            ]
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["modifiers"], {"exp": "two.example.com"})
        self.assertIn(
            "Multiple exp modifiers in the SPF record for example.com",
            _messages(results["warnings"]),
        )

    def testExists(self):
        """exists is noted but its macros are not expanded"""
        zone = {("example.com", "TXT"): ["v=spf1 exists:%{ir}.%{l1r+-}._spf.%{d} -all"]}

        results = self.analyze("example.com", zone)

        self.assertEqual(len(results["warnings"]), 1)
        self.assertEqual(results["warnings"][0]["severity"], "info")
        self.assertEqual(
            results["warnings"][0]["message"],
            "exists mechanism used: %{ir}.%{l1r+-}._spf.%{d}",
        )
        self.assertEqual(results["dns_lookups"], 1)

    def testExistsFailures(self):
        """exists without a value or with bad macros is reported"""
        zone = {("example.com", "TXT"): ["v=spf1 exists: exists:%{z}.example.com -all"]}

        results = self.analyze("example.com", zone)

        warnings = _messages(results["warnings"])
        self.assertIn("exists mechanism missing domain", warnings)
        self.assertTrue(any("Invalid SPF macro syntax" in w for w in warnings))
        self.assertEqual(results["dns_lookups"], 1)

    def testMacroInclude(self):
        """Macro include targets take a lookup but are not resolved"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 include:%{ir}.%{v}._spf.example.com -all"
            ]
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["dns_lookups"], 1)
        self.assertEqual(results["warnings"][0]["severity"], "info")
        self.assertEqual(self.resolver.queries, [("example.com", "TXT")])

    def testPTR(self):
        """ptr is deprecated and costs one lookup"""
        results = self.analyze("example.com", {("example.com", "TXT"): ["v=spf1 ptr -all"]})

        self.assertEqual(
            _messages(results["warnings"]), ["ptr mechanism is deprecated per RFC 7208"]
        )
        self.assertEqual(results["dns_lookups"], 1)

    def testUnknownTerms(self):
        """Unknown mechanisms and modifiers are low warnings"""
        zone = {("example.com", "TXT"): ["v=spf1 foo:bar.example custom=1 -all"]}

        results = self.analyze("example.com", zone)

        self.assertEqual(
            _messages(results["warnings"]),
            ["Unknown mechanism: foo", "Unknown modifier: custom"],
        )
        self.assertEqual(results["mechanisms"][0]["type"], "foo")
        self.assertEqual(results["mechanisms"][0]["value"], "bar.example")
        self.assertTrue(all(w["severity"] == "low" for w in results["warnings"]))

    def testMissingAll(self):
        """Records without an all mechanism are reported"""
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1"]}
        )

        self.assertEqual(
            _messages(results["warnings"]), ['SPF record does not have an "all" mechanism']
        )

    def testStructuralOddities(self):
        """Glued, repeated and early all mechanisms are reported"""
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1~all"]}
        )
        self.assertTrue(
            any("Expected whitespace before 'all'" in w for w in _messages(results["warnings"]))
        )

        spfaudit.utils.DNS_CACHE.clear()
        results = self.analyze(
            "example.com", {("example.com", "TXT"): ["v=spf1 ~all ip4:192.0.2.1 -all"]}
        )
        warnings = _messages(results["warnings"])
        self.assertIn(
            "Mechanisms after the all mechanism in the SPF record for example.com "
            "are never evaluated",
            warnings,
        )
        self.assertIn(
            "The all mechanism is used more than once in the SPF record for example.com",
            warnings,
        )
        self.assertEqual(results["allowed_ips"]["ipv4"], ["192.0.2.1"])

    def testRecordLength(self):
        """Long records are reported"""
        record = "v=spf1 {} -all".format(
            " ".join(f"ip4:192.0.2.{i}" for i in range(1, 30))
        )
        results = self.analyze("example.com", {("example.com", "TXT"): [record]})
        self.assertEqual(len(results["warnings"]), 1)
        self.assertEqual(results["warnings"][0]["severity"], "high")
        self.assertIn(f"({len(record)})", results["warnings"][0]["message"])

        spfaudit.utils.DNS_CACHE.clear()
        record = "v=spf1 {} -all".format(
            " ".join(f"ip4:192.0.2.{i}" for i in range(1, 45))
        )
        results = self.analyze("example.com", {("example.com", "TXT"): [record]})
        self.assertEqual(
            [w["severity"] for w in results["warnings"]], ["high", "medium"]
        )

    def testSplitTXTStrings(self):
        """TXT records made of several strings are joined"""
        zone = {("example.com", "TXT"): [("v=spf1 ip4:192.0.2.1 ", "-all")]}
        results = self.analyze("example.com", zone)
        self.assertEqual(results["record"], "v=spf1 ip4:192.0.2.1 -all")

        context = spfaudit.SPFEvaluationContext()
        spfaudit.parse_spf_record(
            "example.com", '"v=spf1 ip4:192.0.2.1 " "-all"', context
        )
        self.assertEqual([m["type"] for m in context.mechanisms], ["ip4", "all"])

    def testVoidLookups(self):
        """More than two void lookups is a high issue"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 a:n1.example.com a:n2.example.com a:n3.example.com -all"
            ]
        }

        results = self.analyze("example.com", zone)

        self.assertEqual(results["void_dns_lookups"], 3)
        self.assertEqual(len(results["issues"]), 1)
        self.assertEqual(results["issues"][0]["severity"], "high")
        self.assertTrue(results["valid"])

    def testIdempotence(self):
        """Analyzing the same domain twice gives the same result"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 a include:inc.example.com ip4:192.0.2.0/24 ~all"
            ],
            ("example.com", "A"): ["192.0.2.1"],
            ("inc.example.com", "TXT"): ["v=spf1 ip6:2001:db8::/32 ?all"],
        }
        resolver = FakeResolver(zone)

        first = spfaudit.analyze("example.com", resolver=resolver)
        spfaudit.utils.DNS_CACHE.clear()
        second = spfaudit.analyze("example.com", resolver=resolver)

        self.assertEqual(first, second)

    def testMacroGrammar(self):
        """SPF macro-strings are checked against RFC 7208 § 7"""
        context = spfaudit.SPFEvaluationContext()
        check = spfaudit.spf._check_macro_string
        self.assertTrue(check("%{ir}.%{l1r+-}._spf.%{d}", "example.com", context))
        self.assertTrue(check("%%%_%-.example.com", "example.com", context))
        self.assertFalse(check("%{d0}.example.com", "example.com", context))
        self.assertFalse(check("%{d.example.com", "example.com", context))
        self.assertFalse(check("%x.example.com", "example.com", context))
        self.assertEqual(len(context.warnings), 3)

    def testSanitizeDomain(self):
        self.assertEqual(
            spfaudit.utils.sanitize_domain("https://www.Example.com:443/path"),
            "example.com",
        )
        self.assertEqual(spfaudit.utils.sanitize_domain(" mail.example.com. "), "mail.example.com")
        self.assertEqual(spfaudit.utils.normalize_domain("Exa\u200bmple.COM"), "example.com")

    def testGetBaseDomain(self):
        self.assertEqual(spfaudit.utils.get_base_domain("foo.example.com"), "example.com")

    def testAnalyzeDomains(self):
        """Domains are cleaned and deduplicated before analysis"""
        resolver = FakeResolver({("example.com", "TXT"): ["v=spf1 -all"]})

        results = spfaudit.analyze_domains(
            ["Example.com", "https://www.example.com/path", "localhost", ""],
            resolver=resolver,
        )

        self.assertIsInstance(results, dict)
        self.assertEqual(results["domain"], "example.com")

    def testOutputFormats(self):
        """Results can be converted to JSON and CSV"""
        zone = {
            ("mail.example.com", "TXT"): [
                "v=spf1 ip4:192.0.2.1 ip6:2001:db8::1 redirect=_spf.example.com"
            ],
            ("_spf.example.com", "TXT"): ["v=spf1 ip4:192.0.2.2 -all"],
        }
        results = self.analyze("mail.example.com", zone)

        self.assertEqual(json.loads(spfaudit.results_to_json(results))["domain"], "mail.example.com")

        row = spfaudit.results_to_csv_rows(results)[0]
        self.assertEqual(row["base_domain"], "example.com")
        self.assertEqual(row["ipv4"], "192.0.2.1|192.0.2.2")
        self.assertEqual(row["redirect"], "_spf.example.com")
        self.assertEqual(row["mechanisms"], "ip4:192.0.2.1|ip6:2001:db8::1|ip4:192.0.2.2|-all")

        rows = list(csv.DictReader(StringIO(spfaudit.results_to_csv([results]))))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["domain"], "mail.example.com")
        self.assertEqual(rows[0]["valid"], "True")


if __name__ == "__main__":
    unittest.main(verbosity=2)
