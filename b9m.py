"""

b9m.py

b9m manages BIND9 by editing its files

BIND keeps its state in plain text: a named.conf tree (with nested blocks and
include directives) that declares the zones, and one master file per zone that
lists the resource records. This script reads both formats into Python
structures, works out which zone file belongs to which domain, and performs the
small text edits needed to add or remove domains and records. Changes are
applied by asking the daemon to reload (rndc) or by controlling the service
(systemctl).

Parsing is deliberately tolerant. A malformed line, a missing include file or
a broken record is skipped (and logged) so that one bad entry does not hide
the rest of a large configuration.

The script can run directly, or serve a REST API (see b9m_api.py and the
start-api command).

"""

import argparse
import configparser
import ipaddress
import json
import logging
import os
import re
import shutil
import subprocess
import sys
import time
from collections import namedtuple


class ParseError(Exception):
    """
    Base error class for the configuration and zone parsers
    """

class ReadError(ParseError):
    """
    The named file cannot be opened or read
    """

class RecordError(ParseError):
    """
    A single zone record does not match its type grammar
    """

class DirectiveError(ParseError):
    """
    A $TTL directive (or an SOA timer) has an invalid TTL value
    """

class IncludeError(ParseError):
    """
    A file referenced by an include statement cannot be parsed
    """

class DigQueryError(Exception):
    """
    Error class for DigQuery
    """

class SettingsError(Exception):
    """
    Error class for Settings
    """


TTL_UNITS = {'S': 1, 'M': 60, 'H': 3600, 'D': 86400, 'W': 604800}
# ASCII digits only, str.isdigit() also accepts '²' which int() refuses
NUMBER_MATCH = re.compile(r'[0-9]+')

def is_number(token):
    """
    True if token is a plain unsigned integer
    """
    return bool(NUMBER_MATCH.fullmatch(token))

def parse_ttl(ttl_string):
    """
    Convert a TTL such as '3600', '1H' or '2d' to seconds.
    Raise DirectiveError if the value is not an integer with an
    optional S/M/H/D/W unit suffix.
    """
    ttl_string = ttl_string.strip()
    if is_number(ttl_string):
        return int(ttl_string)
    number, unit = ttl_string[:-1], ttl_string[-1:].upper()
    if not is_number(number):
        raise DirectiveError('Invalid TTL value: %s' % ttl_string)
    if unit not in TTL_UNITS:
        raise DirectiveError('Unknown TTL unit in %s' % ttl_string)
    return int(number) * TTL_UNITS[unit]


# named.conf parsing. Lines are stripped before they are matched.
CONF_COMMENT = re.compile(r'^(//|#)')
CONF_INCLUDE = re.compile(r'''^include\s+["']?([^"';]+?)["']?\s*;?$''')
CONF_BLOCK_START = re.compile(r'^(\S.*?)\s*{$')
CONF_INLINE_BLOCK = re.compile(r'^(\S.*?)\s*{\s*(.*?)\s*}\s*;?$')
CONF_KEY_VALUE = re.compile(r'^(\S+)\s+(.+?)\s*;?$')
CONF_BLOCK_END = ('}', '};')

def parse_config(conf_path, _visited=frozenset()):
    """
    Parse a BIND style configuration file into a nested dictionary.

    Every value in the returned dictionary is either a string, a list of
    strings (from an inline block holding more than one item) or another
    dictionary (from a block). Raise ReadError if conf_path cannot be read,
    anything else that cannot be understood is skipped.
    """
    visited = _visited | {os.path.realpath(conf_path)}
    try:
        with open(conf_path) as conf_file:
            lines = conf_file.read().splitlines()
    except (OSError, UnicodeDecodeError) as read_err:
        raise ReadError('Unable to read %s: %s' % (conf_path, read_err))
    logging.debug('Parsing configuration file %s', conf_path)
    return _parse_block(iter(lines), os.path.dirname(conf_path), visited)

def _parse_block(lines, base_dir, visited, nested=False):
    """
    Consume lines until the end of the block (or of the file, at top level).
    The lines iterator is shared with the caller, so a nested block leaves
    it positioned just after its closing brace.
    """
    node = {}
    for line in lines:
        line = line.strip()
        if not line or CONF_COMMENT.match(line):
            continue
        if nested and line in CONF_BLOCK_END:
            return node
        matcher = CONF_INCLUDE.match(line)
        if matcher:
            try:
                merge_config(node, _parse_include(matcher.group(1), base_dir, visited))
            except IncludeError as inc_err:
                logging.warning('Skipping include: %s', inc_err)
            continue
        matcher = CONF_BLOCK_START.match(line)
        if matcher:
            node[matcher.group(1)] = _parse_block(lines, base_dir, visited, True)
            continue
        matcher = CONF_INLINE_BLOCK.match(line)
        if matcher:
            items = [x.strip() for x in matcher.group(2).split(';')]
            items = [x for x in items if x]
            if len(items) == 1:
                node[matcher.group(1)] = items[0]
            else:
                node[matcher.group(1)] = items
            continue
        matcher = CONF_KEY_VALUE.match(line)
        if matcher:
            node[matcher.group(1)] = matcher.group(2).strip('"')
            continue
        logging.debug('Ignoring configuration line: %s', line)
    return node

def _parse_include(include_path, base_dir, visited):
    """
    Parse an included file, relative to the directory of the file
    that includes it. Raise IncludeError on failure or on a cycle.
    """
    if not os.path.isabs(include_path):
        include_path = os.path.join(base_dir, include_path)
    if os.path.realpath(include_path) in visited:
        raise IncludeError('%s is already being parsed (include cycle)' % include_path)
    try:
        return parse_config(include_path, visited)
    except ReadError as read_err:
        raise IncludeError(str(read_err))

def merge_config(dst, src):
    """
    Merge src into dst. Keys holding a dictionary on both sides are
    merged recursively, any other value from src replaces the one in dst.
    """
    for key, value in src.items():
        existing = dst.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merge_config(existing, value)
        else:
            dst[key] = value
    return dst


# Zone file parsing
RECORD_TYPES = ('A', 'AAAA', 'CNAME', 'MX', 'NS', 'PTR', 'SOA', 'SRV', 'TXT')
RECORD_CLASSES = ('IN', 'CH', 'HS', 'CS')
ZONE_ORIGIN = re.compile(r'^\$ORIGIN\s+(\S+)$', re.IGNORECASE)
ZONE_TTL = re.compile(r'^\$TTL\s+(\S+)$', re.IGNORECASE)
SOA_FIELDS = ('mname', 'rname', 'serial', 'refresh', 'retry', 'expire', 'minimum')


class ZoneRecord(namedtuple('ZoneRecord', ['name', 'ttl', 'rclass', 'type', 'value'])):
    """
    One resource record. The value is a string, except for MX, SRV
    and SOA records where it is a dictionary of the rdata fields.
    """
    __slots__ = ()

    def rdata(self):
        """
        Return the value in zone file notation
        """
        if self.type == 'MX':
            return '%d %s' % (self.value['preference'], self.value['exchange'])
        if self.type == 'SRV':
            return '%d %d %d %s' % (self.value['priority'], self.value['weight'],
                                    self.value['port'], self.value['target'])
        if self.type == 'SOA':
            return ' '.join(str(self.value[x]) for x in SOA_FIELDS)
        if self.type == 'TXT':
            return '"%s"' % self.value
        return self.value

    def to_line(self):
        return '%s %d %s %s %s' % (self.name, self.ttl, self.rclass, self.type, self.rdata())

    def as_dict(self):
        return {'name': self.name, 'ttl': self.ttl, 'class': self.rclass,
                'type': self.type, 'value': self.value}


class ZoneFile:
    """
    Records of a zone file in file order, with the final $ORIGIN and $TTL
    values and the errors for any lines that were skipped.
    """

    def __init__(self, origin='', ttl=0):
        self.origin = origin
        self.ttl = ttl
        self.records = []
        self.errors = []

    def __iter__(self):
        return iter(self.records)

    def __len__(self):
        return len(self.records)

    def as_dict(self):
        return {'origin': self.origin, 'ttl': self.ttl,
                'records': [x.as_dict() for x in self.records]}


def strip_comment(line):
    """
    Remove everything from the first ';'. Semicolons inside quoted
    strings are not recognised.
    """
    return line.split(';', 1)[0].strip()

def _logical_lines(raw_lines):
    """
    Yield (line_number, line) pairs, with comments removed and records
    that are split over several lines by parentheses joined back together.
    The parentheses themselves are dropped.
    """
    numbered = enumerate(raw_lines, 1)
    for line_number, line in numbered:
        line = strip_comment(line)
        if not line:
            continue
        if '(' in line and ')' not in line:
            parts = [line]
            for _, next_line in numbered:
                next_line = strip_comment(next_line)
                if not next_line:
                    continue
                parts.append(next_line)
                if ')' in next_line:
                    break
            line = ' '.join(parts)
        if '(' in line or ')' in line:
            line = line.replace('(', ' ').replace(')', ' ').strip()
        yield line_number, line

def parse_zone(zone_path):
    """
    Parse a zone (master) file and return a ZoneFile.
    Raise ReadError if the file cannot be read. Bad records and bad
    directives are logged, kept in ZoneFile.errors and skipped.
    """
    try:
        with open(zone_path) as z_file:
            raw_lines = z_file.read().splitlines()
    except (OSError, UnicodeDecodeError) as read_err:
        raise ReadError('Unable to read %s: %s' % (zone_path, read_err))
    logging.debug('Parsing zone file %s', zone_path)
    zone = ZoneFile()
    for line_number, line in _logical_lines(raw_lines):
        try:
            if line.startswith('$'):
                _parse_directive(line, zone)
            else:
                zone.records.append(parse_record(line, zone.origin, zone.ttl))
        except (RecordError, DirectiveError) as line_err:
            logging.debug('%s line %d skipped: %s', zone_path, line_number, line_err)
            zone.errors.append(line_err)
    return zone

def _parse_directive(line, zone):
    """
    Apply $ORIGIN or $TTL to the running zone state
    """
    matcher = ZONE_ORIGIN.match(line)
    if matcher:
        zone.origin = matcher.group(1)
        if not zone.origin.endswith('.'):
            zone.origin += '.'
        return
    matcher = ZONE_TTL.match(line)
    if matcher:
        zone.ttl = parse_ttl(matcher.group(1))
        return
    raise DirectiveError('Unsupported directive: %s' % line)

def parse_record(line, origin='', default_ttl=0):
    """
    Parse one logical record line of the form
        <name> [<ttl>] [<class>] <type> <rdata>
    The TTL is only recognised as a plain integer; a token that is not
    one is taken to be the class or type instead.
    Raise RecordError if the line does not make a valid record, or
    DirectiveError for an SOA timer that is not a valid TTL.
    """
    tokens = line.split()
    name = tokens[0]
    ttl = None
    rclass = None
    index = 1
    while index < len(tokens) - 1:
        token = tokens[index]
        if ttl is None and is_number(token):
            ttl = int(token)
        elif rclass is None and token.upper() in RECORD_CLASSES:
            rclass = token.upper()
        else:
            break
        index += 1
    if index >= len(tokens) or tokens[index].upper() not in RECORD_TYPES:
        raise RecordError('No known record type in: %s' % line)
    rtype = tokens[index].upper()
    rdata = tokens[index + 1:]
    if not rdata:
        raise RecordError('Missing %s data in: %s' % (rtype, line))
    if name != '@' and not name.endswith('.') and origin and name != origin:
        name = '%s.%s' % (name, origin)
    if ttl is None:
        ttl = default_ttl
    return ZoneRecord(name, ttl, rclass or 'IN', rtype, _parse_rdata(rtype, rdata))

def _parse_rdata(rtype, rdata):
    """
    Apply the type specific grammar to the rdata tokens
    """
    if rtype == 'SOA':
        if len(rdata) != 7 or not is_number(rdata[2]):
            raise RecordError('SOA needs mname rname serial refresh retry expire minimum')
        soa = {'mname': rdata[0], 'rname': rdata[1], 'serial': int(rdata[2])}
        # a bad timer raises DirectiveError, like a bad $TTL
        for field, value in zip(SOA_FIELDS[3:], rdata[3:]):
            soa[field] = parse_ttl(value)
        return soa
    if rtype == 'MX':
        if len(rdata) != 2 or not is_number(rdata[0]):
            raise RecordError('MX needs <preference> <exchange>')
        return {'preference': int(rdata[0]), 'exchange': rdata[1]}
    if rtype == 'SRV':
        if len(rdata) != 4 or not all(is_number(x) for x in rdata[:3]):
            raise RecordError('SRV needs <priority> <weight> <port> <target>')
        return {'priority': int(rdata[0]), 'weight': int(rdata[1]),
                'port': int(rdata[2]), 'target': rdata[3]}
    if rtype == 'TXT':
        return ' '.join(rdata).strip('"')
    return ' '.join(rdata)


# Domain resolution
ZONE_KEY_QUOTED = re.compile(r'^zone\s+"([^"]+)"')
ZONE_KEY_BARE = re.compile(r'^zone\s+(\S+)')

def zone_name(key):
    """
    Return the domain declared by a configuration key such as
    'zone "example.com"' or 'zone example.com IN', or None
    """
    matcher = ZONE_KEY_QUOTED.match(key) or ZONE_KEY_BARE.match(key)
    if matcher:
        return matcher.group(1)
    return None

def iter_zone_blocks(config):
    """
    Yield (domain, block) for every top-level zone declaration whose
    value is a block
    """
    for key, value in config.items():
        domain = zone_name(key)
        if domain and isinstance(value, dict):
            yield (domain, value)

def resolve_domains(config, zone_dir):
    """
    Map each declared domain to the absolute path of its zone file.
    Relative file names are taken to be inside zone_dir. Zones without
    a file statement are left out. So is a zone declared on a single line,
    such as zone "a.com" { type master; file "db.a.com"; };, because
    parse_config reads it as an inline list rather than a block.
    """
    domains = {}
    for domain, block in iter_zone_blocks(config):
        file_path = block.get('file')
        if not isinstance(file_path, str) or not file_path:
            logging.debug('Zone %s has no file, ignoring', domain)
            continue
        if not os.path.isabs(file_path):
            file_path = os.path.join(zone_dir, file_path)
        domains[domain] = file_path
    return domains

def get_domains(settings):
    """
    Parse the configured named.conf and resolve its domains
    """
    return resolve_domains(parse_config(settings.config_file), settings.zone_dir)


# Input validation
DOMAIN_MATCH = re.compile(r'^([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$')
SUBDOMAIN_MATCH = re.compile(r'^[a-zA-Z0-9-]{1,63}$')

def validate_domain(domain):
    return bool(DOMAIN_MATCH.match(domain or ''))

def validate_subdomain(subdomain):
    if subdomain == '@':
        return True
    return bool(SUBDOMAIN_MATCH.match(subdomain or ''))

def validate_ip(addr, version=None):
    """
    Return True if addr is an IP address (of the given version, if any)
    """
    try:
        ip_addr = ipaddress.ip_address(addr)
    except ValueError:
        return False
    return version is None or ip_addr.version == version


class DigQuery:
    """
    Instantiates a DNS querier using system dig, pointed at
    an outside resolver
    """

    def __init__(self, path_to_dig='/usr/bin/dig', resolver='8.8.8.8'):
        if os.path.exists(path_to_dig) and os.path.isfile(path_to_dig):
            self.command = [path_to_dig, '@' + resolver]
            self.options = ['+short', '+time=2', '+tries=1']
        else:
            raise DigQueryError('Invalid path to dig: %s' % path_to_dig)

    def _call(self, name, query_type):
        """
        Makes subprocess call to dig, returns tuple of form:
        (boolean:success_failure, string:stdout_stderr)
        """
        dig_command = self.command + [name, query_type] + self.options
        logging.debug('Calling dig: %s', dig_command)
        reply = subprocess.run(dig_command, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                               check=False, universal_newlines=True)
        if reply.returncode == 0:
            return (True, reply.stdout)
        return (False, reply.stderr)

    def has_a_record(self, name):
        """
        Return True if name resolves to at least one IPv4 address
        """
        if not name.endswith('.'):
            name += '.'
        (success, message) = self._call(name, 'A')
        if not success:
            logging.debug('dig failed for %s: %s', name, message)
            return False
        answers = [x.strip() for x in message.split('\n') if x.strip()]
        return any(validate_ip(x, 4) for x in answers)


class BindService:
    """
    Controls the BIND daemon through rndc and systemctl
    """

    SERVICE_NAMES = ['bind9', 'named']

    def __init__(self, rndc='/usr/sbin/rndc', systemctl='/bin/systemctl', service=None):
        self.rndc = rndc
        self.systemctl = systemctl
        self.service = service or self.detect_service_name()

    @staticmethod
    def _run(command):
        """
        Run command, return tuple of form (boolean, string) where the
        string is stdout on success and stderr (or stdout) on failure
        """
        logging.debug('Running %s', command)
        try:
            reply = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                   check=False, universal_newlines=True)
        except OSError as os_err:
            logging.debug('Unable to run %s: %s', command[0], os_err)
            return (False, str(os_err))
        if reply.returncode == 0:
            return (True, reply.stdout.strip())
        return (False, (reply.stderr or reply.stdout).strip())

    def detect_service_name(self):
        """
        Look for a bind9 or named unit, fall back to named
        """
        (_, units) = self._run([self.systemctl, 'list-units', '--type=service', '--all'])
        for name in self.SERVICE_NAMES:
            if name + '.service' in units:
                logging.debug('Detected BIND service name %s', name)
                return name
        return 'named'

    def reload(self):
        return self._run([self.rndc, 'reload'])

    def restart(self):
        return self._run([self.systemctl, 'restart', self.service])

    def stop(self):
        return self._run([self.systemctl, 'stop', self.service])

    def start(self):
        return self._run([self.systemctl, 'start', self.service])

    def status(self):
        return self._run([self.systemctl, 'is-active', self.service])


CONFIG_PATHS = ['/etc/named.conf', '/etc/bind/named.conf', '/usr/local/etc/named.conf']
ZONE_DIRS = ['/var/named', '/var/lib/bind', '/etc/bind', '/usr/local/etc/namedb']

def detect_config_file(candidates=None):
    for path in candidates or CONFIG_PATHS:
        if os.path.isfile(path):
            return path
    return None

def detect_zone_dir(candidates=None):
    for path in candidates or ZONE_DIRS:
        if os.path.isdir(path):
            return path
    return None


class Settings:
    """
    Runtime settings, built once (normally from b9m.ini) and handed to
    the objects that need them.

    Arguments that are used (and their default value if not specified):

        conffile:    Path to named.conf (first of CONFIG_PATHS that exists)
        zonedir:     Directory for zone files (first of ZONE_DIRS that exists)
        rndc:        Full path to rndc executable (/usr/sbin/rndc)
        systemctl:   Full path to systemctl executable (/bin/systemctl)
        service:     Name of the BIND unit (detected: bind9 or named)
        dig:         Full path to dig executable (/usr/bin/dig)
        resolver:    Resolver used to check nameserver A records (8.8.8.8)
        validate_ns: Check that nameservers resolve before adding a domain (True)
        serial:      Serial number for a new zone (today's date, YYYYMMDD01)
        tokenfile:   Location of the API token file (./b9m_api.ini)
    """

    DEFAULTS = {'conffile': None,
                'zonedir': None,
                'rndc': '/usr/sbin/rndc',
                'systemctl': '/bin/systemctl',
                'service': None,
                'dig': '/usr/bin/dig',
                'resolver': '8.8.8.8',
                'validate_ns': True,
                'serial': None,
                'tokenfile': './b9m_api.ini',
               }

    def __init__(self, **kwargs):
        info = {}
        for key, value in self.DEFAULTS.items():
            info[key] = kwargs.get(key, value)
        self.config_file = info['conffile'] or detect_config_file()
        if not self.config_file:
            raise SettingsError('Unable to find named.conf, set conffile')
        self.zone_dir = info['zonedir'] or detect_zone_dir()
        if not self.zone_dir:
            raise SettingsError('Unable to find zone directory, set zonedir')
        self.rndc = info['rndc']
        self.systemctl = info['systemctl']
        self.service = info['service']
        self.dig = info['dig']
        self.resolver = info['resolver']
        self.validate_ns = info['validate_ns']
        if isinstance(self.validate_ns, str):
            self.validate_ns = self.validate_ns.lower() in ('1', 'yes', 'true', 'on')
        self.serial = str(info['serial'] or time.strftime('%Y%m%d01'))
        self.token_file = info['tokenfile']

    def __repr__(self):
        return 'Settings(conffile=%r, zonedir=%r)' % (self.config_file, self.zone_dir)


class ZoneManager:
    """
    Adds and removes domains and records by editing named.conf and
    the zone files, then reloads BIND.

    Each change returns a tuple of form (boolean, string): whether it
    succeeded and a message saying what happened.
    """

    # Written for each new domain: ns1, ns2, domain, serial
    SKELETON_ZONE = '$TTL 86400\n'
    SKELETON_ZONE += '@ IN SOA {ns1}. admin.{domain}. ( {serial} 86400 3600 604800 86400 )\n'
    SKELETON_ZONE += '@ IN NS {ns1}.\n@ IN NS {ns2}.\n'
    ZONE_ENTRY = 'zone "{domain}" {{\n\ttype master;\n\tfile "{path}";\n}};\n'
    RECORD_TYPES = ['A', 'AAAA', 'CNAME', 'TXT', 'MX', 'NS', 'PTR']

    def __init__(self, settings, service=None, dig=None):
        self.settings = settings
        if service is None:
            service = BindService(settings.rndc, settings.systemctl, settings.service)
        self.service = service
        self.dig = dig
        if self.dig is None and settings.validate_ns:
            try:
                self.dig = DigQuery(settings.dig, settings.resolver)
            except DigQueryError as dig_err:
                logging.debug('%s, nameserver checks unavailable', dig_err)

    def get_config(self):
        return parse_config(self.settings.config_file)

    def get_domains(self):
        return get_domains(self.settings)

    def _zone_file(self, domain):
        """
        Return tuple of form (zone_file_path, None), or (None, error_message)
        """
        try:
            domains = self.get_domains()
        except ReadError as read_err:
            return (None, str(read_err))
        if domain not in domains:
            return (None, 'Domain does not exist: %s' % domain)
        return (domains[domain], None)

    def _reload(self, message):
        (success, output) = self.service.reload()
        if not success:
            logging.debug('Reload failed: %s', output)
            return (False, '%s, but reload failed: %s' % (message, output))
        return (True, message)

    def add_domain(self, domain, ns1, ns2):
        """
        Create a zone file holding SOA and NS records for domain and
        declare it in named.conf
        """
        for label, name in (('domain', domain), ('NS1', ns1), ('NS2', ns2)):
            if not validate_domain(name):
                return (False, 'Invalid %s name: %s' % (label, name))
        try:
            domains = self.get_domains()
            with open(self.settings.config_file) as conf_file:
                conf_text = conf_file.read()
        except (ReadError, OSError) as read_err:
            return (False, str(read_err))
        if domain in domains or ('zone "%s"' % domain) in conf_text:
            return (False, 'Domain already exists: %s' % domain)
        if self.settings.validate_ns:
            if not self.dig:
                return (False, 'Unable to check nameservers, dig is not available')
            for ns_name in (ns1, ns2):
                if not self.dig.has_a_record(ns_name):
                    return (False, 'Nameserver %s has no A record' % ns_name)
        zone_path = os.path.join(self.settings.zone_dir, domain + '.b9m')
        zone_text = self.SKELETON_ZONE.format(domain=domain, ns1=ns1, ns2=ns2,
                                              serial=self.settings.serial)
        try:
            with open(zone_path, 'w') as z_file:
                z_file.write(zone_text)
            logging.debug('Wrote zone file %s', zone_path)
            with open(self.settings.config_file, 'a') as conf_file:
                if conf_text and not conf_text.endswith('\n'):
                    conf_file.write('\n')
                conf_file.write(self.ZONE_ENTRY.format(domain=domain, path=zone_path))
        except OSError as os_err:
            return (False, 'Unable to add domain %s: %s' % (domain, os_err))
        return self._reload('Domain %s added' % domain)

    def delete_domain(self, domain):
        """
        Remove the zone file of domain and its zone block in named.conf
        """
        if not validate_domain(domain):
            return (False, 'Invalid domain name: %s' % domain)
        (zone_path, error) = self._zone_file(domain)
        if error:
            return (False, error)
        try:
            os.remove(zone_path)
        except OSError as os_err:
            return (False, 'Unable to remove zone file %s: %s' % (zone_path, os_err))
        zone_entry = 'zone "%s"' % domain
        kept = []
        # open braces of the zone block being removed, nested blocks included
        depth = 0
        try:
            with open(self.settings.config_file) as conf_file:
                lines = conf_file.read().split('\n')
            for line in lines:
                stripped = line.strip()
                if depth > 0:
                    depth += stripped.count('{') - stripped.count('}')
                    continue
                if stripped.startswith(zone_entry) and '{' in stripped:
                    depth = stripped.count('{') - stripped.count('}')
                    continue
                kept.append(line)
            with open(self.settings.config_file, 'w') as conf_file:
                conf_file.write('\n'.join(kept))
        except OSError as os_err:
            return (False, 'Unable to update %s: %s' % (self.settings.config_file, os_err))
        return self._reload('Domain %s deleted' % domain)

    def _check_record(self, domain, name, rtype):
        if not validate_domain(domain):
            return 'Invalid domain name: %s' % domain
        if not validate_subdomain(name):
            return 'Invalid subdomain: %s' % name
        if rtype not in self.RECORD_TYPES:
            return 'Invalid record type: %s' % rtype
        return None

    def add_record(self, domain, rtype, name, value, ttl):
        """
        Append a record line to the zone file of domain
        """
        rtype = rtype.upper()
        error = self._check_record(domain, name, rtype)
        if error:
            return (False, error)
        try:
            ttl = int(ttl)
        except (TypeError, ValueError):
            return (False, 'TTL must be an integer: %s' % ttl)
        if ttl <= 0:
            return (False, 'TTL must be greater than 0')
        if rtype == 'A' and not validate_ip(value, 4):
            return (False, 'Invalid IPv4 address: %s' % value)
        if rtype == 'AAAA' and not validate_ip(value, 6):
            return (False, 'Invalid IPv6 address: %s' % value)
        (zone_path, error) = self._zone_file(domain)
        if error:
            return (False, error)
        full_name = name if name == '@' else '%s.%s.' % (name, domain)
        record_line = '%s %d IN %s %s\n' % (full_name, ttl, rtype, value)
        try:
            with open(zone_path, 'r+') as z_file:
                content = z_file.read()
                if content and not content.endswith('\n'):
                    z_file.write('\n')
                z_file.write(record_line)
        except OSError as os_err:
            return (False, 'Unable to add record to %s: %s' % (zone_path, os_err))
        logging.debug('Added to %s: %s', zone_path, record_line.strip())
        return self._reload('Record %s %s %s added' % (full_name, rtype, value))

    def delete_record(self, domain, name, rtype, value):
        """
        Remove the lines of the zone file of domain that hold the record,
        whether its name is written short or fully qualified
        """
        rtype = rtype.upper()
        error = self._check_record(domain, name, rtype)
        if error:
            return (False, error)
        (zone_path, error) = self._zone_file(domain)
        if error:
            return (False, error)
        names = [re.escape(name)]
        if name != '@':
            names.append(re.escape('%s.%s.' % (name, domain)))
        pattern = r'^[ \t]*(?:%s)[ \t]+(?:\d+[ \t]+)?(?:\S+[ \t]+)?%s[ \t]+%s[ \t]*(?:\n|$)' % (
            '|'.join(names), re.escape(rtype), re.escape(value))
        try:
            with open(zone_path) as z_file:
                content = z_file.read()
            (content, count) = re.subn(pattern, '', content, flags=re.MULTILINE)
            if not count:
                return (False, 'Record %s %s %s not found' % (name, rtype, value))
            with open(zone_path, 'w') as z_file:
                z_file.write(content)
        except OSError as os_err:
            return (False, 'Unable to delete record from %s: %s' % (zone_path, os_err))
        logging.debug('Removed %d line(s) from %s', count, zone_path)
        return self._reload('Record %s %s %s deleted' % (name, rtype, value))

    def get_records(self, domain):
        """
        Return tuple of form (True, ZoneFile) or (False, error_message)
        """
        (zone_path, error) = self._zone_file(domain)
        if error:
            return (False, error)
        try:
            return (True, parse_zone(zone_path))
        except ReadError as read_err:
            return (False, str(read_err))

    def backup(self, directory):
        """
        Copy named.conf and the master zone files under directory,
        keeping their absolute paths
        """
        def target(path):
            return os.path.join(directory, os.path.abspath(path).lstrip(os.sep))

        try:
            config = self.get_config()
            conf_copy = target(self.settings.config_file)
            os.makedirs(os.path.dirname(conf_copy), exist_ok=True)
            shutil.copy2(self.settings.config_file, conf_copy)
        except (ReadError, OSError) as copy_err:
            return (False, 'Unable to back up configuration: %s' % copy_err)
        copied = 1
        zone_files = resolve_domains(config, self.settings.zone_dir)
        for domain, block in iter_zone_blocks(config):
            if block.get('type') != 'master' or domain not in zone_files:
                continue
            zone_copy = target(zone_files[domain])
            try:
                os.makedirs(os.path.dirname(zone_copy), exist_ok=True)
                shutil.copy2(zone_files[domain], zone_copy)
                copied += 1
            except OSError as os_err:
                logging.debug('Skipping zone file of %s: %s', domain, os_err)
        return (True, '%d files backed up to %s' % (copied, directory))


def read_config(conf_file='./b9m.ini'):
    """
    Import the b9m configuration file as a ConfigParser
    object and return it as a real dictionary
    """
    config = configparser.ConfigParser()
    try:
        config.read(conf_file)
        return config_to_dict(config)
    except (IOError, configparser.Error) as conf_err:
        logging.debug('Error reading config file: %s', conf_err)
    return {}

def config_to_dict(config_parser_obj):
    """
    Collapse the sections of the ConfigParser object (flattening the keys)
    into a dictionary, converting multiple values into a list
    """
    conf_dict = {}
    for section in config_parser_obj.sections():
        for item in config_parser_obj.options(section):
            if item == 'validate_ns':
                item_value = config_parser_obj[section].getboolean(item)
            else:
                item_value = config_parser_obj[section][item]
                if '|' in item_value:
                    item_value = item_value.split('|')
            conf_dict[item] = item_value
    logging.debug('Configuration: %s', conf_dict)
    return conf_dict

def parse_arguments(args=None):
    """
    Uses argparse to define and parse command-line arguments
    """
    help_width = lambda prog: argparse.HelpFormatter(prog, max_help_position=34)
    desc = 'b9m manages BIND9 configuration and zone files'
    parser = argparse.ArgumentParser(prog='b9m', description=desc, formatter_class=help_width)
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose messages')
    parser.add_argument('-c', '--config', metavar='FILE', help='Location of config file',
                        default='./b9m.ini')
    #
    subparsers = parser.add_subparsers(title='commands', description='BIND actions',
                                       dest='command',
                                       help='add -h after command for additional information')
    subparsers.required = True
    #
    parser_dadd = subparsers.add_parser('add-domain', help='Add a new domain')
    parser_dadd.add_argument('domain')
    parser_dadd.add_argument('ns1', help='Primary nameserver')
    parser_dadd.add_argument('ns2', help='Secondary nameserver')
    #
    parser_ddel = subparsers.add_parser('delete-domain', help='Delete a domain')
    parser_ddel.add_argument('domain')
    #
    parser_radd = subparsers.add_parser('add-record', help='Add a DNS record')
    parser_radd.add_argument('domain')
    parser_radd.add_argument('name', help='Subdomain, or @ for the domain itself')
    parser_radd.add_argument('type', metavar='TYPE', help='A, AAAA, CNAME, TXT, MX, NS or PTR')
    parser_radd.add_argument('value')
    parser_radd.add_argument('ttl', type=int)
    #
    parser_rdel = subparsers.add_parser('delete-record', help='Delete a DNS record')
    parser_rdel.add_argument('domain')
    parser_rdel.add_argument('name')
    parser_rdel.add_argument('type', metavar='TYPE')
    parser_rdel.add_argument('value')
    #
    parser_rlist = subparsers.add_parser('get-records', help='Show all records of a domain')
    parser_rlist.add_argument('domain')
    #
    subparsers.add_parser('get-domains', help='Show all domains and their zone files')
    subparsers.add_parser('get-config', help='Show the parsed BIND configuration')
    #
    parser_backup = subparsers.add_parser('backup', help='Copy config and zone files')
    parser_backup.add_argument('directory')
    #
    subparsers.add_parser('reload', help='Reload BIND configuration (rndc reload)')
    subparsers.add_parser('restart', help='Restart the BIND service')
    subparsers.add_parser('stop', help='Stop the BIND service')
    subparsers.add_parser('start', help='Start the BIND service')
    subparsers.add_parser('status', help='Return status of the BIND service')
    #
    parser_api = subparsers.add_parser('start-api', help='Serve the REST API')
    parser_api.add_argument('port', type=int)
    return parser.parse_args(args)

def set_logging(debug_flag=False):
    """
    Set logging to either DEBUG or INFO
    """
    if debug_flag:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

def report(result):
    """
    Print the message of a (success, message) tuple, exit 1 on failure
    """
    (success, message) = result
    if not success:
        print('Error: ' + message)
        sys.exit(1)
    if message:
        print(message)

def start_api(settings, port):
    """
    Serve the REST API with the standard library WSGI server
    """
    from wsgiref.simple_server import make_server
    import b9m_api
    app = b9m_api.create_app(settings)
    logging.info('Starting API server on port %d', port)
    with make_server('', port, app) as httpd:
        httpd.serve_forever()

def main(args=None):
    """
    Direct calling function
    """
    my_args = parse_arguments(args)
    set_logging(my_args.verbose)
    my_conf = read_config(my_args.config)
    try:
        my_settings = Settings(**my_conf)
    except SettingsError as set_err:
        report((False, str(set_err)))
    my_manager = ZoneManager(my_settings)
    my_service = my_manager.service
    try:
        if my_args.command == 'add-domain':
            report(my_manager.add_domain(my_args.domain, my_args.ns1, my_args.ns2))
        if my_args.command == 'delete-domain':
            report(my_manager.delete_domain(my_args.domain))
        if my_args.command == 'add-record':
            report(my_manager.add_record(my_args.domain, my_args.type, my_args.name,
                                         my_args.value, my_args.ttl))
        if my_args.command == 'delete-record':
            report(my_manager.delete_record(my_args.domain, my_args.name, my_args.type,
                                            my_args.value))
        if my_args.command == 'get-records':
            (success, zone) = my_manager.get_records(my_args.domain)
            if not success:
                report((success, zone))
            for record in zone:
                print(record.to_line())
        if my_args.command == 'get-domains':
            for domain, zone_path in sorted(my_manager.get_domains().items()):
                print('%s %s' % (domain, zone_path))
        if my_args.command == 'get-config':
            print(json.dumps(my_manager.get_config(), indent=2))
        if my_args.command == 'backup':
            report(my_manager.backup(my_args.directory))
        if my_args.command == 'reload':
            report(my_service.reload())
        if my_args.command == 'restart':
            report(my_service.restart())
        if my_args.command == 'stop':
            report(my_service.stop())
        if my_args.command == 'start':
            report(my_service.start())
        if my_args.command == 'status':
            report(my_service.status())
        if my_args.command == 'start-api':
            start_api(my_settings, my_args.port)
    except ReadError as read_err:
        report((False, str(read_err)))

if __name__ == "__main__":
    main()
