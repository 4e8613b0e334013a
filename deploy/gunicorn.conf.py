"""Gunicorn 生产配置（包仓库服务器）

用法:
  GOTTABE_REPO_ROOT=/srv/gottabe GOTTABE_REPO_USERS=/etc/gottabe/users.yml \
    gunicorn --config deploy/gunicorn.conf.py "gottabe.web.app:create_app()"
"""

import multiprocessing
import os

# ---------- 网络 ----------
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8080")

# ---------- 并发 ----------
workers = int(os.getenv("GUNICORN_WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8)))
threads = int(os.getenv("GUNICORN_THREADS", "4"))
worker_class = "gthread"
# 大包上传/下载
timeout = 600

# ---------- 日志 ----------
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ---------- 进程管理 ----------
graceful_timeout = 30
keepalive = 5
