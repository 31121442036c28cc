"""
Uses Falcon to implement simple API wrapper for b9m
"""
import configparser
import hashlib
import json
import falcon
import b9m

# Pylint really doesn't like falcon, this is to silence false positives
# pylint: disable=too-few-public-methods,c-extension-no-member,no-member

class HandleCORS(object):
    """
    To enable all sites to reach the API, as it relies on
    token authentication for access control
    """

    def process_request(self, req, resp):
        resp.set_header('Access-Control-Allow-Origin', '*')
        resp.set_header('Access-Control-Allow-Methods', '*')
        resp.set_header('Access-Control-Allow-Headers', '*')
        resp.set_header('Access-Control-Max-Age', '1728000')  # 20 days
        if req.method == 'OPTIONS':
            raise falcon.HTTPStatus(falcon.HTTP_200, text='\n')

class AuthToken(object):
    """
    Implements simple authentication token.

    The token file is an ini file whose DEFAULT section holds 'token',
    the SHA224 hexdigest of the token clients send in the Authorization
    header (optionally prefixed by 'Bearer ').
    """

    TOKEN_FIELD = 'token'

    def __init__(self, token_file='./b9m_api.ini'):
        self.token_file = token_file
        self.auth_token = self.get_token()
        if not self.auth_token:
            raise b9m.SettingsError('Unable to find auth token in %s' % token_file)

    def get_token(self):
        """
        Attempt to read the hashed token from the token file
        """
        config = configparser.ConfigParser()
        try:
            config.read(self.token_file)
            return config['DEFAULT'].get(self.TOKEN_FIELD, None)
        except (IOError, configparser.Error):
            return None

    def process_request(self, req, _):
        """
        Falcon required method for handling request and (in this case)
        ensuring the provided token is correct
        """
        if req.method == 'OPTIONS':
            return
        token = req.get_header('Authorization')
        if not token:
            raise falcon.HTTPUnauthorized(title='Auth token required',
                                          description='Provide an authentication token '
                                                      'in header request')
        if token.startswith('Bearer '):
            token = token[len('Bearer '):]
        if not self._token_is_valid(token):
            raise falcon.HTTPUnauthorized(title='Invalid auth token',
                                          description='Invalid authentication token')

    def _token_is_valid(self, token):
        return bool(self.hash(token) == self.auth_token)

    @staticmethod
    def hash(token):
        """
        Perform SHA224 hash on given token and return string (hexdigest)
        """
        return hashlib.sha224(str.encode(token)).hexdigest()

def reply(resp, result, success_status=falcon.HTTP_200):
    """
    Write a (success, message) tuple as {'ok': ..., 'message': ...},
    failures answered with 400
    """
    (success, message) = result
    resp.status = success_status if success else falcon.HTTP_400
    resp.text = json.dumps({'ok': success, 'message': message})

def read_failed(resp, read_err):
    resp.status = falcon.HTTP_500
    resp.text = json.dumps({'ok': False, 'message': str(read_err)})

class ManagerBase(object):
    """
    Base API class for resources backed by a ZoneManager
    """

    def __init__(self, manager):
        self.manager = manager

class ServiceBase(object):
    """
    Base API class for resources backed by a BindService
    """

    def __init__(self, service):
        self.service = service

class Domains(ManagerBase):
    """
    Handle listing and adding domains
    """

    def on_get(self, _, resp):
        """
        Equivalent to "b9m get-domains"
        Reply json:
            {'domains': [{'domain': <domain1>, 'file': <zone file1>},
                         ...
                        ]
            }
        """
        try:
            domains = self.manager.get_domains()
        except b9m.ReadError as read_err:
            read_failed(resp, read_err)
            return
        resp.text = json.dumps({'domains': [{'domain': x, 'file': domains[x]}
                                            for x in sorted(domains)]})

    def on_post(self, req, resp):
        """
        Equivalent to "b9m add-domain <domain> <ns1> <ns2>"
        """
        media = req.get_media(default_when_empty={})
        domain = media.get('domain')
        ns1 = media.get('ns1')
        ns2 = media.get('ns2')
        if not (domain and ns1 and ns2):
            reply(resp, (False, 'Need to provide the domain, ns1 and ns2'))
            return
        reply(resp, self.manager.add_domain(domain, ns1, ns2), falcon.HTTP_201)

class Domain(ManagerBase):
    """
    Handle removal of a domain
    """

    def on_delete(self, _, resp, domain):
        """
        Equivalent to "b9m delete-domain <domain>"
        """
        reply(resp, self.manager.delete_domain(domain))

class Records(ManagerBase):
    """
    Handle record requests for a domain
    """

    def on_get(self, _, resp, domain):
        """
        Equivalent to "b9m get-records <domain>"
        Reply json:
            {'origin': <origin>, 'ttl': <ttl>,
             'records': [{'name': .., 'ttl': .., 'class': .., 'type': .., 'value': ..},
                         ...
                        ]
            }
        """
        (success, zone) = self.manager.get_records(domain)
        if not success:
            resp.status = falcon.HTTP_404
            resp.text = json.dumps({'ok': False, 'message': zone})
            return
        resp.text = json.dumps(zone.as_dict())

    def on_post(self, req, resp, domain):
        """
        Equivalent to "b9m add-record <domain> <name> <type> <value> <ttl>"
        """
        media = req.get_media(default_when_empty={})
        fields = [media.get(x) for x in ('name', 'type', 'value', 'ttl')]
        if not all(fields):
            reply(resp, (False, 'Need to provide the name, type, value and ttl'))
            return
        (name, rtype, value, ttl) = fields
        reply(resp, self.manager.add_record(domain, rtype, name, value, ttl), falcon.HTTP_201)

    def on_delete(self, req, resp, domain):
        """
        Equivalent to "b9m delete-record <domain> <name> <type> <value>"
        """
        media = req.get_media(default_when_empty={})
        fields = [media.get(x) for x in ('name', 'type', 'value')]
        if not all(fields):
            reply(resp, (False, 'Need to provide the name, type and value'))
            return
        (name, rtype, value) = fields
        reply(resp, self.manager.delete_record(domain, name, rtype, value))

class Config(ManagerBase):
    """
    Handle requests for the parsed named.conf
    """

    def on_get(self, _, resp):
        try:
            resp.text = json.dumps(self.manager.get_config())
        except b9m.ReadError as read_err:
            read_failed(resp, read_err)

class ServiceAction(ServiceBase):
    """
    Handle reload/restart/stop/start requests
    """

    def __init__(self, service, action):
        super().__init__(service)
        self.action = action

    def on_post(self, _, resp):
        (success, output) = getattr(self.service, self.action)()
        if success:
            resp.text = json.dumps({'ok': True, 'message': 'BIND %s succeeded' % self.action})
        else:
            resp.status = falcon.HTTP_500
            resp.text = json.dumps({'ok': False, 'message': output})

class Status(ServiceBase):
    """
    Handle status requests
    """

    def on_get(self, _, resp):
        """
        Return result of 'systemctl is-active' on GET request
        Reply json:
            {'status': <active|inactive|...>}
        """
        (success, output) = self.service.status()
        if not success:
            resp.status = falcon.HTTP_500
        resp.text = json.dumps({'status': output})


def create_app(settings, manager=None, service=None, auth=None):
    """
    Build the falcon application. manager, service and auth default to
    the ones described by settings.
    """
    if manager is None:
        manager = b9m.ZoneManager(settings, service)
    if service is None:
        service = manager.service
    if auth is None:
        auth = AuthToken(settings.token_file)
    app = falcon.App(middleware=[HandleCORS(), auth])
    app.add_route('/domains', Domains(manager))
    app.add_route('/domains/{domain}', Domain(manager))
    app.add_route('/domains/{domain}/records', Records(manager))
    app.add_route('/config', Config(manager))
    for action in ('reload', 'restart', 'stop', 'start'):
        app.add_route('/' + action, ServiceAction(service, action))
    app.add_route('/status', Status(service))
    return app

def make_wsgi_app(conf_file='./b9m.ini'):
    """
    Entry point for WSGI servers, e.g. gunicorn 'b9m_api:make_wsgi_app()'
    """
    return create_app(b9m.Settings(**b9m.read_config(conf_file)))
