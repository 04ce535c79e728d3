"""数据库基础模型导出。

仅提供 Base 定义，不在应用启动时自动建表或同步结构；
生产环境结构由部署侧迁移维护，测试中直接使用 ``Base.metadata.create_all``。
"""

from credkeeper.models.base import Base

__all__ = ["Base"]
