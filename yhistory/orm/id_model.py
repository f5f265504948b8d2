"""声明基类

版本表和宿主实体可以共用同一个 Base，方便一次 create_all。
"""

from sqlalchemy.orm import declarative_base


Base = declarative_base()
