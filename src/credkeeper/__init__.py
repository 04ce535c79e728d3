"""凭据与会话生命周期管理服务。"""

__version__ = "1.0.0"
