import os
import shutil
import tempfile
import unittest

import b9m


NAMED_CONF = """\
options {
\tdirectory "/var/cache/bind";
};

zone "example.com" {
\ttype master;
\tfile "db.example.com";
};

zone "other.org" {
\ttype slave;
\tfile "db.other.org";
};
"""

EXAMPLE_ZONE = """\
$ORIGIN example.com.
$TTL 3600
@ IN SOA ns1.example.com. admin.example.com. ( 1 3600 600 604800 3600 )
@ IN NS ns1.example.com.
www 300 IN A 192.0.2.1"""


class FakeService:
    """
    Stands in for BindService, counting reloads
    """

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.reloads = 0

    def reload(self):
        self.reloads += 1
        if self.succeed:
            return (True, '')
        return (False, 'rndc: connect failed')


class FakeDig:

    def __init__(self, resolvable):
        self.resolvable = resolvable

    def has_a_record(self, name):
        return name in self.resolvable


class ManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp)
        self.zone_dir = os.path.join(self.tmp, 'zones')
        os.mkdir(self.zone_dir)
        self.conf_path = os.path.join(self.tmp, 'named.conf')
        self.write(self.conf_path, NAMED_CONF)
        self.write(os.path.join(self.zone_dir, 'db.example.com'), EXAMPLE_ZONE)
        self.settings = b9m.Settings(conffile=self.conf_path, zonedir=self.zone_dir,
                                     validate_ns='no', serial=2024010101, service='named')
        self.service = FakeService()
        self.manager = b9m.ZoneManager(self.settings, self.service)

    @staticmethod
    def write(path, text):
        with open(path, 'w') as out_file:
            out_file.write(text)

    @staticmethod
    def read(path):
        with open(path) as in_file:
            return in_file.read()

    def records(self, domain='example.com'):
        (success, zone) = self.manager.get_records(domain)
        self.assertTrue(success, zone)
        return zone.records


class TestDomains(ManagerTestCase):

    def test_get_domains(self):
        self.assertEqual(self.manager.get_domains(), {
            'example.com': os.path.join(self.zone_dir, 'db.example.com'),
            'other.org': os.path.join(self.zone_dir, 'db.other.org')})

    def test_add_domain(self):
        (success, message) = self.manager.add_domain('new.net', 'ns1.example.com',
                                                     'ns2.example.com')
        self.assertTrue(success, message)
        zone_path = os.path.join(self.zone_dir, 'new.net.b9m')
        self.assertEqual(self.manager.get_domains()['new.net'], zone_path)
        zone = b9m.parse_zone(zone_path)
        self.assertEqual(zone.ttl, 86400)
        self.assertEqual([x.type for x in zone], ['SOA', 'NS', 'NS'])
        self.assertEqual(zone.records[0].value['serial'], 2024010101)
        self.assertEqual(zone.records[0].value['rname'], 'admin.new.net.')
        self.assertEqual(zone.records[2].value, 'ns2.example.com.')
        self.assertEqual(self.service.reloads, 1)

    def test_add_existing_domain(self):
        (success, message) = self.manager.add_domain('example.com', 'ns1.example.com',
                                                     'ns2.example.com')
        self.assertFalse(success)
        self.assertIn('already exists', message)
        self.assertEqual(self.read(self.conf_path), NAMED_CONF)

    def test_add_invalid_domain(self):
        (success, message) = self.manager.add_domain('bad_domain', 'ns1.example.com',
                                                     'ns2.example.com')
        self.assertFalse(success)
        self.assertIn('Invalid domain', message)
        (success, message) = self.manager.add_domain('ok.com', 'ns1', 'ns2.example.com')
        self.assertFalse(success)
        self.assertIn('NS1', message)

    def test_nameserver_check(self):
        self.settings.validate_ns = True
        manager = b9m.ZoneManager(self.settings, self.service, FakeDig(['ns1.example.com']))
        (success, message) = manager.add_domain('new.net', 'ns1.example.com', 'ns2.example.com')
        self.assertFalse(success)
        self.assertIn('ns2.example.com', message)
        self.assertNotIn('new.net', manager.get_domains())

    def test_reload_failure_is_reported(self):
        self.service.succeed = False
        (success, message) = self.manager.add_domain('new.net', 'ns1.example.com',
                                                     'ns2.example.com')
        self.assertFalse(success)
        self.assertIn('reload failed', message)
        self.assertIn('new.net', self.manager.get_domains())

    def test_delete_domain(self):
        (success, message) = self.manager.delete_domain('example.com')
        self.assertTrue(success, message)
        self.assertFalse(os.path.exists(os.path.join(self.zone_dir, 'db.example.com')))
        config = b9m.parse_config(self.conf_path)
        self.assertNotIn('zone "example.com"', config)
        self.assertIn('zone "other.org"', config)
        self.assertIn('options', config)

    def test_delete_domain_with_nested_block(self):
        self.write(self.conf_path, NAMED_CONF.replace(
            '\ttype master;\n',
            '\ttype master;\n\tallow-transfer {\n\t\t192.0.2.53;\n\t\t192.0.2.54;\n\t};\n'))
        self.assertIn('allow-transfer', self.manager.get_config()['zone "example.com"'])
        (success, message) = self.manager.delete_domain('example.com')
        self.assertTrue(success, message)
        with open(self.conf_path) as conf_file:
            text = conf_file.read()
        self.assertNotIn('db.example.com', text)
        self.assertEqual(text.count('{'), text.count('}'))
        self.assertEqual(b9m.parse_config(self.conf_path), {
            'options': {'directory': '/var/cache/bind'},
            'zone "other.org"': {'type': 'slave', 'file': 'db.other.org'}})

    def test_delete_unknown_domain(self):
        (success, message) = self.manager.delete_domain('missing.com')
        self.assertFalse(success)
        self.assertIn('does not exist', message)
        self.assertEqual(self.service.reloads, 0)

    def test_add_then_delete_domain(self):
        self.assertTrue(self.manager.add_domain('new.net', 'ns1.example.com',
                                                'ns2.example.com')[0])
        self.assertTrue(self.manager.delete_domain('new.net')[0])
        self.assertEqual(b9m.parse_config(self.conf_path), b9m.parse_config(
            self._original_conf()))

    def _original_conf(self):
        path = os.path.join(self.tmp, 'original.conf')
        self.write(path, NAMED_CONF)
        return path


class TestRecords(ManagerTestCase):

    def test_get_records(self):
        records = self.records()
        self.assertEqual([x.type for x in records], ['SOA', 'NS', 'A'])
        self.assertEqual(records[2].name, 'www.example.com.')

    def test_get_records_unknown_domain(self):
        (success, message) = self.manager.get_records('missing.com')
        self.assertFalse(success)
        self.assertIn('does not exist', message)

    def test_get_records_missing_zone_file(self):
        (success, message) = self.manager.get_records('other.org')
        self.assertFalse(success)
        self.assertIn('Unable to read', message)

    def test_add_record(self):
        (success, message) = self.manager.add_record('example.com', 'a', 'api',
                                                     '192.0.2.7', 600)
        self.assertTrue(success, message)
        self.assertEqual(self.records()[-1],
                         b9m.ZoneRecord('api.example.com.', 600, 'IN', 'A', '192.0.2.7'))
        self.assertEqual(self.service.reloads, 1)

    def test_add_apex_record(self):
        (success, message) = self.manager.add_record('example.com', 'MX', '@',
                                                     '10 mail.example.com.', '300')
        self.assertTrue(success, message)
        self.assertEqual(self.records()[-1].name, '@')
        self.assertEqual(self.records()[-1].value,
                         {'preference': 10, 'exchange': 'mail.example.com.'})

    def test_add_record_validation(self):
        cases = [
            (('bad_domain', 'A', 'www', '192.0.2.1', 60), 'Invalid domain'),
            (('example.com', 'A', 'w w', '192.0.2.1', 60), 'Invalid subdomain'),
            (('example.com', 'SOA', 'www', 'x', 60), 'Invalid record type'),
            (('example.com', 'A', 'www', '192.0.2.1', 0), 'greater than 0'),
            (('example.com', 'A', 'www', '192.0.2.1', 'ten'), 'integer'),
            (('example.com', 'A', 'www', '2001:db8::1', 60), 'IPv4'),
            (('example.com', 'AAAA', 'www', '192.0.2.1', 60), 'IPv6'),
            (('missing.com', 'A', 'www', '192.0.2.1', 60), 'does not exist'),
        ]
        for args, expected in cases:
            (success, message) = self.manager.add_record(*args)
            self.assertFalse(success, args)
            self.assertIn(expected, message)
        self.assertEqual(self.service.reloads, 0)

    def test_delete_record(self):
        (success, message) = self.manager.delete_record('example.com', 'www', 'A', '192.0.2.1')
        self.assertTrue(success, message)
        self.assertEqual([x.type for x in self.records()], ['SOA', 'NS'])

    def test_delete_added_record(self):
        self.manager.add_record('example.com', 'TXT', 'info', '"hello"', 60)
        self.manager.add_record('example.com', 'A', 'api', '192.0.2.7', 60)
        (success, message) = self.manager.delete_record('example.com', 'info', 'TXT', '"hello"')
        self.assertTrue(success, message)
        self.assertEqual([x.name for x in self.records()][-2:],
                         ['www.example.com.', 'api.example.com.'])

    def test_delete_apex_record(self):
        (success, message) = self.manager.delete_record('example.com', '@', 'NS',
                                                        'ns1.example.com.')
        self.assertTrue(success, message)
        self.assertEqual([x.type for x in self.records()], ['SOA', 'A'])

    def test_delete_missing_record(self):
        (success, message) = self.manager.delete_record('example.com', 'www', 'A', '192.0.2.9')
        self.assertFalse(success)
        self.assertIn('not found', message)
        self.assertEqual(len(self.records()), 3)


class TestBackup(ManagerTestCase):

    def test_backup(self):
        backup_dir = os.path.join(self.tmp, 'backup')
        (success, message) = self.manager.backup(backup_dir)
        self.assertTrue(success, message)
        self.assertIn('2 files', message)
        conf_copy = os.path.join(backup_dir, os.path.abspath(self.conf_path).lstrip(os.sep))
        self.assertEqual(self.read(conf_copy), NAMED_CONF)
        zone_copy = os.path.join(backup_dir, os.path.abspath(
            os.path.join(self.zone_dir, 'db.example.com')).lstrip(os.sep))
        self.assertEqual(self.read(zone_copy), EXAMPLE_ZONE)

    def test_backup_missing_config(self):
        os.remove(self.conf_path)
        (success, _) = self.manager.backup(os.path.join(self.tmp, 'backup'))
        self.assertFalse(success)


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_read_config(self):
        ini_path = os.path.join(self.tmp.name, 'b9m.ini')
        with open(ini_path, 'w') as ini_file:
            ini_file.write('[BIND]\nconffile = /etc/bind/named.conf\nzonedir = /var/lib/bind\n'
                           '[VALIDATION]\nvalidate_ns = no\nresolver = 1.1.1.1|9.9.9.9\n')
        conf = b9m.read_config(ini_path)
        self.assertEqual(conf['conffile'], '/etc/bind/named.conf')
        self.assertIs(conf['validate_ns'], False)
        self.assertEqual(conf['resolver'], ['1.1.1.1', '9.9.9.9'])
        settings = b9m.Settings(**conf)
        self.assertEqual(settings.zone_dir, '/var/lib/bind')
        self.assertFalse(settings.validate_ns)

    def test_missing_ini(self):
        self.assertEqual(b9m.read_config(os.path.join(self.tmp.name, 'none.ini')), {})

    def test_defaults(self):
        settings = b9m.Settings(conffile='/x/named.conf', zonedir='/x')
        self.assertEqual(settings.rndc, '/usr/sbin/rndc')
        self.assertTrue(settings.validate_ns)
        self.assertEqual(len(settings.serial), 10)

    def test_detection(self):
        conf_path = os.path.join(self.tmp.name, 'named.conf')
        open(conf_path, 'w').close()
        self.assertEqual(b9m.detect_config_file(['/nonexistent/named.conf', conf_path]),
                         conf_path)
        self.assertEqual(b9m.detect_zone_dir(['/nonexistent', self.tmp.name]), self.tmp.name)
        self.assertIsNone(b9m.detect_zone_dir(['/nonexistent']))


class TestBindService(unittest.TestCase):

    def test_missing_executable(self):
        service = b9m.BindService(rndc='/nonexistent/rndc', systemctl='/nonexistent/systemctl')
        self.assertEqual(service.service, 'named')
        (success, message) = service.reload()
        self.assertFalse(success)
        self.assertTrue(message)

    @unittest.skipUnless(shutil.which('echo'), 'needs echo')
    def test_commands(self):
        echo = shutil.which('echo')
        service = b9m.BindService(rndc=echo, systemctl=echo, service='bind9')
        self.assertEqual(service.reload(), (True, 'reload'))
        self.assertEqual(service.restart(), (True, 'restart bind9'))
        self.assertEqual(service.status(), (True, 'is-active bind9'))

    @unittest.skipUnless(shutil.which('false'), 'needs false')
    def test_failing_command(self):
        service = b9m.BindService(rndc=shutil.which('false'), service='named')
        self.assertFalse(service.reload()[0])


class TestValidation(unittest.TestCase):

    def test_domain(self):
        self.assertTrue(b9m.validate_domain('example.com'))
        self.assertTrue(b9m.validate_domain('a-b.example.co.uk'))
        self.assertFalse(b9m.validate_domain('example'))
        self.assertFalse(b9m.validate_domain('example.com.'))
        self.assertFalse(b9m.validate_domain(None))

    def test_subdomain(self):
        self.assertTrue(b9m.validate_subdomain('@'))
        self.assertTrue(b9m.validate_subdomain('www-2'))
        self.assertFalse(b9m.validate_subdomain('a.b'))
        self.assertFalse(b9m.validate_subdomain('x' * 64))

    def test_ip(self):
        self.assertTrue(b9m.validate_ip('192.0.2.1'))
        self.assertTrue(b9m.validate_ip('2001:db8::1', 6))
        self.assertFalse(b9m.validate_ip('192.0.2.1', 6))
        self.assertFalse(b9m.validate_ip('300.1.1.1'))

    def test_dig_path(self):
        with self.assertRaises(b9m.DigQueryError):
            b9m.DigQuery('/nonexistent/dig')


if __name__ == '__main__':
    unittest.main()
