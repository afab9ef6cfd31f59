"""
Remote execution of MongoDB tools over SSH.

SshService runs mongodump/mongorestore on a remote host and streams the
archive between the remote process and a local file. Data is moved in
fixed-size chunks; paramiko only re-opens the channel window as chunks are
consumed, so a slow local disk throttles the remote process instead of
filling memory.
"""

import shlex
import socket
import logging
import threading
from pathlib import Path
from typing import List, Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from cherrypicker.config import SshCredentials
from cherrypicker.errors import FileSystemError, ProcessExecutionError, SshConnectionError, ValidationError
from cherrypicker.utils.process import ProcessResult, mask_arg


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
CONNECT_TIMEOUT = 30


def build_remote_command(tool: str, args: List[str], query_value: Optional[str] = None) -> str:
    """Quote a tool invocation for the remote shell."""
    parts = [tool] + list(args)
    if query_value:
        parts += ['--query', query_value]
    return ' '.join(shlex.quote(part) for part in parts)


def masked_remote_command(tool: str, args: List[str], query_value: Optional[str] = None) -> str:
    """Same as build_remote_command with secrets masked, for logs and errors."""
    return build_remote_command(tool, [mask_arg(arg) for arg in args], query_value)


class _StderrCollector(threading.Thread):
    """Drains the remote stderr so the remote process never blocks on it."""

    def __init__(self, stream, tool: str):
        super().__init__(daemon=True)
        self.stream = stream
        self.tool = tool
        self.chunks = []

    def run(self):
        try:
            for line in iter(self.stream.readline, ''):
                if isinstance(line, bytes):
                    line = line.decode('utf-8', errors='replace')
                if not line:
                    break
                self.chunks.append(line)
                logger.debug(f"[SSH:{self.tool}][stderr] {line.rstrip()}")
        except (OSError, EOFError, socket.timeout) as e:
            logger.debug(f"[SSH:{self.tool}] stderr stream closed: {e}")

    @property
    def text(self) -> str:
        return ''.join(self.chunks)


class SshService:
    """
    Runs commands on a remote host via paramiko.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds a remote read/write may stall before the
                command is abandoned (None waits indefinitely)
        """
        self.timeout = timeout

    def _connect(self, credentials: SshCredentials) -> SSHClient:
        """
        Open an authenticated SSH connection.

        Raises:
            ValidationError: If neither password nor private key is usable
            SshConnectionError: If the connection or authentication fails
        """
        connect_kwargs = {
            'hostname': credentials.host,
            'port': credentials.port or 22,
            'username': credentials.username,
            'timeout': CONNECT_TIMEOUT
        }

        if credentials.password:
            connect_kwargs['password'] = credentials.password
        elif credentials.private_key:
            key_path = Path(credentials.private_key).expanduser()
            if not key_path.exists():
                raise ValidationError(f"Private key not found: {credentials.private_key}")
            connect_kwargs['key_filename'] = str(key_path)
            if credentials.passphrase:
                connect_kwargs['passphrase'] = credentials.passphrase
        else:
            raise ValidationError('SSH configuration must include either password or privateKey')

        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        try:
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise SshConnectionError(f"SSH authentication failed for {credentials.username}@{credentials.host}: {e}")
        except (paramiko.SSHException, socket.error) as e:
            client.close()
            raise SshConnectionError(f"SSH connection to {credentials.host}:{credentials.port} failed: {e}")

        return client

    def _open(self, client: SSHClient, credentials: SshCredentials, command: str):
        try:
            return client.exec_command(command, bufsize=CHUNK_SIZE, timeout=self.timeout)
        except paramiko.SSHException as e:
            raise SshConnectionError(f"Failed to execute command on {credentials.host}: {e}")

    def _finish(self, stdout, collector: _StderrCollector, tool: str, masked: str) -> str:
        exit_status = stdout.channel.recv_exit_status()
        collector.join(timeout=5)
        stderr = collector.text

        if exit_status != 0:
            raise ProcessExecutionError(
                f"Remote {tool} failed with code {exit_status}. stderr: {stderr.strip()}",
                command=masked,
                stderr=stderr,
                returncode=exit_status,
            )
        return stderr

    def execute(
        self,
        credentials: SshCredentials,
        tool: str,
        args: List[str],
        query_value: Optional[str],
        destination_path: str
    ):
        """
        Run ``tool args`` remotely and stream its stdout into a local file.

        The caller owns ``destination_path``: on failure it may be partially
        written and must be discarded, never promoted.

        Args:
            credentials: SSH connection settings
            tool: Remote executable name (e.g. mongodump)
            args: Arguments; the archive must be written to stdout
            query_value: Optional JSON query passed as --query
            destination_path: Local file receiving the archive bytes

        Raises:
            ValidationError: If the credentials are incomplete
            SshConnectionError: If the connection or transport fails
            ProcessExecutionError: If the remote tool exits non-zero or stalls
            FileSystemError: If the local file cannot be written
        """
        command = build_remote_command(tool, args, query_value)
        masked = masked_remote_command(tool, args, query_value)
        logger.info(f"Running on {credentials.host}: {masked}")

        client = self._connect(credentials)
        try:
            stdin, stdout, stderr = self._open(client, credentials, command)
            stdin.close()

            collector = _StderrCollector(stderr, tool)
            collector.start()

            try:
                f = open(destination_path, 'wb')
            except OSError as e:
                raise FileSystemError(f"Failed to open {destination_path} for writing: {e}")

            received = 0
            with f:
                while True:
                    try:
                        chunk = stdout.read(CHUNK_SIZE)
                    except socket.timeout:
                        raise ProcessExecutionError(
                            f"Remote {tool} produced no output for {self.timeout} seconds",
                            command=masked,
                        )
                    except (paramiko.SSHException, EOFError, OSError) as e:
                        raise SshConnectionError(f"Transport failed while reading from {credentials.host}: {e}")

                    if not chunk:
                        break

                    try:
                        f.write(chunk)
                    except OSError as e:
                        raise FileSystemError(f"Failed to write {destination_path}: {e}")
                    received += len(chunk)

                try:
                    f.flush()
                except OSError as e:
                    raise FileSystemError(f"Failed to flush {destination_path}: {e}")

            self._finish(stdout, collector, tool, masked)
            logger.debug(f"Received {received} bytes from {credentials.host}")

        finally:
            client.close()

    def execute_with_input(
        self,
        credentials: SshCredentials,
        tool: str,
        args: List[str],
        source_path: str
    ) -> ProcessResult:
        """
        Run ``tool args`` remotely, streaming a local file into its stdin.

        Used by remote restores (mongorestore --archive reads stdin).

        Returns:
            ProcessResult with the remote stdout and stderr text

        Raises:
            ValidationError: If the credentials are incomplete
            SshConnectionError: If the connection or transport fails
            ProcessExecutionError: If the remote tool exits non-zero or stalls
            FileSystemError: If the local file cannot be read
        """
        command = build_remote_command(tool, args)
        masked = masked_remote_command(tool, args)
        logger.info(f"Running on {credentials.host}: {masked}")

        try:
            f = open(source_path, 'rb')
        except OSError as e:
            raise FileSystemError(f"Failed to open {source_path} for reading: {e}")

        with f:
            client = self._connect(credentials)
            try:
                stdin, stdout, stderr = self._open(client, credentials, command)

                collector = _StderrCollector(stderr, tool)
                collector.start()

                while True:
                    try:
                        chunk = f.read(CHUNK_SIZE)
                    except OSError as e:
                        raise FileSystemError(f"Failed to read {source_path}: {e}")
                    if not chunk:
                        break

                    try:
                        stdin.write(chunk)
                    except socket.timeout:
                        raise ProcessExecutionError(
                            f"Remote {tool} stopped reading input for {self.timeout} seconds",
                            command=masked,
                        )
                    except (paramiko.SSHException, EOFError, OSError) as e:
                        raise SshConnectionError(f"Transport failed while writing to {credentials.host}: {e}")

                stdin.channel.shutdown_write()

                try:
                    output = stdout.read().decode('utf-8', errors='replace')
                except socket.timeout:
                    raise ProcessExecutionError(
                        f"Remote {tool} did not finish within {self.timeout} seconds",
                        command=masked,
                    )
                except (paramiko.SSHException, EOFError, OSError) as e:
                    raise SshConnectionError(f"Transport failed while reading from {credentials.host}: {e}")

                for line in output.splitlines():
                    logger.info(f"[SSH:{tool}] {line}")

                stderr_text = self._finish(stdout, collector, tool, masked)
                return ProcessResult(0, output, stderr_text)

            finally:
                client.close()
