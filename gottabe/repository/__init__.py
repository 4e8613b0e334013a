"""包仓库：磁盘存储布局、传输层、远程客户端"""

from gottabe.repository.client import DownloadedPackage, RemoteRepositoryClient
from gottabe.repository.store import RepositoryStore
from gottabe.repository.transport import (
    HttpTransport,
    NotOnServer,
    RepositoryTransport,
    ServerUnavailable,
)

__all__ = [
    "DownloadedPackage",
    "HttpTransport",
    "NotOnServer",
    "RemoteRepositoryClient",
    "RepositoryStore",
    "RepositoryTransport",
    "ServerUnavailable",
]
