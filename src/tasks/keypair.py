"""Certificate keypair task.

Keypairs live in the cluster CA store rather than at the provider. An
issued certificate is never reissued: once present it is reported as up to
date whatever the model now says.
"""

import logging

from engine.errors import LoadError
from engine.task import CREATE, Change, Task
from statestore.ca import USAGE_CLIENT, USAGE_SERVER, CertificateRequest

logger = logging.getLogger(__name__)


class Keypair(Task):
    """A CA-signed certificate and private key."""

    type_name = 'keypair'
    fields = {'subject': str, 'type': str, 'alternateNames': list}
    required = ('subject',)

    def decode(self, name, body):
        super().decode(name, body)
        usage = self.spec.setdefault('type', USAGE_CLIENT)
        if usage not in (USAGE_CLIENT, USAGE_SERVER):
            raise LoadError(f"{self.key}: type must be {USAGE_CLIENT!r} or {USAGE_SERVER!r}", code='E204')
        names = self.spec.setdefault('alternateNames', [])
        if not all(isinstance(n, str) for n in names):
            raise LoadError(f"{self.key}: alternateNames must be strings", code='E204')

    def request(self) -> CertificateRequest:
        return CertificateRequest(
            subject=self.spec['subject'],
            usage=self.spec['type'],
            alternate_names=list(self.spec['alternateNames']),
        )

    def find(self, ctx):
        if ctx.ca_store.find_cert(self.name) is None:
            return None
        return self.desired(ctx)

    def apply(self, ctx, change: Change) -> None:
        if change.kind == CREATE:
            ctx.ca_store.issue_cert(self.name, self.request())

    def render_terraform(self, tf, ctx, change: Change) -> None:
        # Certificates are state, not provider resources
        ctx.ca_store.issue_cert(self.name, self.request())
