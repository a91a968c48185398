"""
数据库操作模块
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..utils import timing_decorator
from .models import KeyRotationHistory, init_db

logger = logging.getLogger(__name__)


class DatabaseManager:
    """数据库管理器，处理加密实体与轮换记录的读写"""

    def __init__(self, connection_string: str, **engine_kwargs):
        """
        初始化数据库管理器

        Args:
            connection_string: 数据库连接字符串
            engine_kwargs: 透传给 create_engine 的参数
        """
        try:
            self.engine = create_engine(connection_string, **engine_kwargs)
            init_db(self.engine)  # 初始化数据库表
            self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized ({self.engine.url.get_backend_name()})")
        except Exception as e:
            logger.error(f"Error initializing database: {e}")
            raise

    def add_record(self, model, **values) -> int:
        """
        添加一条实体记录

        Args:
            model: 模型类
            values: 列值

        Returns:
            新记录的ID
        """
        session = self.Session()
        try:
            record = model(**values)
            session.add(record)
            session.commit()
            logger.info(f"Added {model.__name__} record with ID {record.id}")
            return record.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error adding {model.__name__} record: {e}")
            raise
        finally:
            session.close()

    def get_record(self, model, record_id: int):
        """
        通过ID获取记录

        Args:
            model: 模型类
            record_id: 记录ID

        Returns:
            模型实例，如果不存在则返回None
        """
        session = self.Session()
        try:
            return session.get(model, record_id)
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving {model.__name__} record {record_id}: {e}")
            raise
        finally:
            session.close()

    def find_by_search_hash(self, hash_column, hash_value: str) -> List[Any]:
        """
        通过搜索哈希列做等值查找

        Args:
            hash_column: 搜索哈希列, 如 Client.email_search_hash
            hash_value: 搜索哈希

        Returns:
            匹配的记录列表
        """
        if not hash_value:
            return []

        model = hash_column.class_
        session = self.Session()
        try:
            return (
                session.query(model)
                .filter(hash_column == hash_value)
                .order_by(model.id)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error searching {model.__name__} by {hash_column.key}: {e}")
            raise
        finally:
            session.close()

    def count_records(self, model) -> int:
        """获取某类实体的记录总数"""
        session = self.Session()
        try:
            return session.query(func.count(model.id)).scalar() or 0
        finally:
            session.close()

    def iter_records(self, model, batch_size: int = 200) -> Iterator[List[Any]]:
        """
        按ID顺序分批遍历全部记录

        每批使用独立会话, 避免整表加载到内存。

        Args:
            model: 模型类
            batch_size: 每批记录数

        Yields:
            记录列表
        """
        last_id = None
        while True:
            session = self.Session()
            try:
                query = session.query(model)
                if last_id is not None:
                    query = query.filter(model.id > last_id)
                batch = query.order_by(model.id).limit(batch_size).all()
            except SQLAlchemyError as e:
                logger.error(f"Error loading {model.__name__} records after ID {last_id}: {e}")
                raise
            finally:
                session.close()

            if not batch:
                return
            yield batch
            last_id = batch[-1].id

    @timing_decorator
    def sample_records(self, model, limit: int) -> List[Any]:
        """
        获取按ID排序的前若干条记录

        Args:
            model: 模型类
            limit: 最大记录数

        Returns:
            记录列表
        """
        session = self.Session()
        try:
            return session.query(model).order_by(model.id).limit(limit).all()
        finally:
            session.close()

    def update_fields(self, model, record_id: int, updates: Dict[str, Any]) -> bool:
        """
        在单个事务中更新一条记录的多个列, 全部提交或全部回滚

        Args:
            model: 模型类
            record_id: 记录ID
            updates: 列名 -> 新值

        Returns:
            记录存在并被更新返回True，否则返回False
        """
        if not updates:
            return False

        session = self.Session()
        try:
            updated = (
                session.query(model)
                .filter(model.id == record_id)
                .update(updates, synchronize_session=False)
            )
            session.commit()
            return updated > 0
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error updating {model.__name__} record {record_id}: {e}")
            raise
        finally:
            session.close()

    def add_rotation_record(self, **values) -> int:
        """
        写入一条密钥轮换审计记录

        Returns:
            新记录的ID
        """
        return self.add_record(KeyRotationHistory, **values)

    @timing_decorator
    def get_rotation_history(self, limit: Optional[int] = None) -> List[KeyRotationHistory]:
        """
        获取密钥轮换历史, 最新的在前

        Args:
            limit: 最大条数

        Returns:
            轮换记录列表
        """
        session = self.Session()
        try:
            query = session.query(KeyRotationHistory).order_by(
                KeyRotationHistory.rotated_at.desc(), KeyRotationHistory.id.desc()
            )
            if limit:
                query = query.limit(limit)
            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving rotation history: {e}")
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """释放连接池"""
        self.engine.dispose()
