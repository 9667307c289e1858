import abc
import os
import shlex

from collections import namedtuple
from contextlib import contextmanager
from os.path import basename, expanduser

from fabric import Connection, Config
from invoke.exceptions import CommandTimedOut
from logzero import logger
from paramiko import AuthenticationException, SSHException

from chaoscluster.common import DEFAULT_CHAOS_CONNECT_TIMEOUT
from chaoscluster.common.errors import (
    AuthenticationError,
    HostUnreachableError,
    RemoteTimeoutError,
)

Result = namedtuple('Result', ['return_code', 'stdout', 'stderr'])

# Return code of a session that ended without the remote side sending an exit
# status, e.g. because the host went down while the command was running.
EXIT_STATUS_MISSING = -1


class RemoteExecutor(abc.ABC):
    """
    Runs commands on, and copies files to, remote hosts.

    execute() returns a Result. A Result with return_code EXIT_STATUS_MISSING
    means the session was terminated abnormally. A nonzero return code means
    the command ran and failed. Failing to reach the host at all raises a
    chaoscluster.common.errors.TransportError.
    """

    def execute(self, host: str, action: str, user: str = None,
                as_sudo=False, **kwargs) -> Result:
        rtn = self._execute_on_host(host, action, user=user, as_sudo=as_sudo,
                                    **kwargs)
        return rtn

    def put(self, host: str, local_path: str, remote_path: str,
            user: str = None, as_sudo=False) -> Result:
        return self._put_on_host(host, local_path, remote_path, user=user,
                                 as_sudo=as_sudo)

    @abc.abstractmethod
    def _execute_on_host(self, host: str, action: str, user: str = None,
                         as_sudo=False, **kwargs) -> Result:
        raise NotImplementedError('users must define _execute_on_host to use '
                                  'this base class')

    @abc.abstractmethod
    def _put_on_host(self, host: str, local_path: str, remote_path: str,
                     user: str = None, as_sudo=False) -> Result:
        raise NotImplementedError('users must define _put_on_host to use '
                                  'this base class')


class FabricExecutor(RemoteExecutor):
    config = None

    def __init__(self, ssh_config_file=None, user=None, port=None,
                 identity_file=None,
                 connect_timeout=DEFAULT_CHAOS_CONNECT_TIMEOUT):
        if ssh_config_file:
            ssh_config_file = expanduser(ssh_config_file)
        self.config = FabricExecutor._create_config(
            ssh_config_file=ssh_config_file)
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout
        self.connect_kwargs = FabricExecutor._collect_connect_kwargs(
            identity_file)

    @staticmethod
    def _create_config(ssh_config_file=None):
        if ssh_config_file:
            FabricExecutor._is_readable_file(ssh_config_file, 'ssh_config')
        return Config(runtime_ssh_path=ssh_config_file)

    @staticmethod
    def _is_readable_file(path, file_kind):
        if not isinstance(path, str):
            raise ValueError("path to file must be a string")

        if os.access(path, os.R_OK):
            if os.path.isfile(path):
                return
            else:
                raise OSError("Path is not to a file -- '%s'" % str(path))
        else:
            raise OSError("Unable to access the file (not readable) -- %s -- "
                          "'%s'" % (file_kind, path))

    @staticmethod
    def _collect_connect_kwargs(identity_file):
        connect_kwargs = {}

        if identity_file:
            identity_file = expanduser(identity_file)
            FabricExecutor._is_readable_file(identity_file, 'identity_file')
            connect_kwargs['key_filename'] = identity_file

        if not connect_kwargs:
            connect_kwargs = None

        return connect_kwargs

    @staticmethod
    def _run_on_connection(connection, action, as_sudo=False, timeout=None):
        # warn=True: a nonzero exit is reported in the result, not raised
        if as_sudo:
            return connection.sudo(action, hide=True, warn=True,
                                   timeout=timeout)
        return connection.run(action, hide=True, warn=True, timeout=timeout)

    @contextmanager
    def _session(self, host, user=None):
        if not host:
            raise ValueError("empty host provided")
        connection = Connection(host, config=self.config,
                                user=user or self.user, port=self.port,
                                connect_timeout=self.connect_timeout,
                                connect_kwargs=self.connect_kwargs)
        try:
            try:
                connection.open()
            except AuthenticationException as e:
                raise AuthenticationError(
                    "host: {} authentication failed: {}".format(host, e)) from e
            except (SSHException, OSError, EOFError) as e:
                raise HostUnreachableError(
                    host, "connection failed: {}".format(e)) from e
            yield connection
        finally:
            connection.close()

    def _execute_on_host(self, host: str, action: str, user: str = None,
                         as_sudo=False, timeout=None) -> Result:
        logger.debug("host: %s executing cmd: '%s'", host, action)
        with self._session(host, user=user) as c:
            try:
                rtn = self._run_on_connection(c, action, as_sudo=as_sudo,
                                              timeout=timeout)
            except CommandTimedOut as e:
                raise RemoteTimeoutError(
                    host, "command timed out after {}s".format(timeout)) from e
            except (SSHException, OSError, EOFError) as e:
                # The session went away before the command reported back
                logger.debug("host: %s session terminated: %s", host, e)
                return Result(EXIT_STATUS_MISSING, "", str(e))

        return Result(rtn.return_code, rtn.stdout, rtn.stderr)

    def _put_on_host(self, host: str, local_path: str, remote_path: str,
                     user: str = None, as_sudo=False) -> Result:
        logger.debug("host: %s copying %s to %s", host, local_path,
                     remote_path)
        with self._session(host, user=user) as c:
            try:
                if not as_sudo:
                    c.put(local_path, remote=remote_path)
                    return Result(0, "", "")
                # sftp runs as the login user; stage the file and move it
                # into place with sudo.
                staging = "/tmp/{}".format(basename(remote_path))
                c.put(local_path, remote=staging)
                rtn = self._run_on_connection(
                    c, "mv {} {}".format(shlex.quote(staging),
                                         shlex.quote(remote_path)),
                    as_sudo=True)
            except (SSHException, OSError, EOFError) as e:
                raise HostUnreachableError(
                    host, "file transfer failed: {}".format(e)) from e

        return Result(rtn.return_code, rtn.stdout, rtn.stderr)
