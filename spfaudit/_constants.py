# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

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

__version__ = "1.0.0"

SYNTAX_ERROR_MARKER = "➞"

SPF_VERSION_TAG = "v=spf1"

# RFC 7208 § 4.6.4
MAX_DNS_LOOKUPS = 10
MAX_VOID_DNS_LOOKUPS = 2
MAX_MX_HOSTS = 10

# Complexity and size limits used when reporting
MAX_INCLUDES = 5
MAX_TXT_STRING_LENGTH = 255
MAX_RECORD_BYTES = 512

DEFAULT_DNS_TIMEOUT = 5.0
DEFAULT_DNS_TIMEOUT_RETRIES = 2
CACHE_MAX_LEN = 200000
CACHE_MAX_AGE_SECONDS = 1800

env = os.environ

if "DNS_TIMEOUT" in env:
    DEFAULT_DNS_TIMEOUT = float(env["DNS_TIMEOUT"])
if "DNS_TIMEOUT_RETRIES" in env:
    DEFAULT_DNS_TIMEOUT_RETRIES = int(env["DNS_TIMEOUT_RETRIES"])
if "CACHE_MAX_LEN" in env:
    CACHE_MAX_LEN = int(env["CACHE_MAX_LEN"])
if "CACHE_MAX_AGE_SECONDS" in env:
    CACHE_MAX_AGE_SECONDS = int(env["CACHE_MAX_AGE_SECONDS"])

DNS_CACHE_MAX_LEN = CACHE_MAX_LEN
if "DNS_CACHE_MAX_LEN" in env:
    DNS_CACHE_MAX_LEN = int(env["DNS_CACHE_MAX_LEN"])
DNS_CACHE_MAX_AGE_SECONDS = CACHE_MAX_AGE_SECONDS
if "DNS_CACHE_MAX_AGE_SECONDS" in env:
    DNS_CACHE_MAX_AGE_SECONDS = int(env["DNS_CACHE_MAX_AGE_SECONDS"])
