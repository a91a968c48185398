"""
数据库模型定义

*_encrypted 列保存密文信封, *_search_hash 列保存对应明文的搜索哈希。
"""

import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class TherapistPHI(TimestampMixin, Base):
    """治疗师个人敏感信息"""

    __tablename__ = "therapist_phi"

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, index=True)

    ssn_encrypted = Column(Text)
    dob_encrypted = Column(Text)
    gender_encrypted = Column(Text)
    race_encrypted = Column(Text)
    home_address_encrypted = Column(Text)
    home_city_encrypted = Column(Text)
    home_state_encrypted = Column(Text)
    home_zip_encrypted = Column(Text)
    personal_phone_encrypted = Column(Text)
    personal_email_encrypted = Column(Text)
    birth_city_encrypted = Column(Text)
    birth_state_encrypted = Column(Text)
    birth_country_encrypted = Column(Text)
    work_permit_visa_encrypted = Column(Text)
    emergency_contact_name_encrypted = Column(Text)
    emergency_contact_phone_encrypted = Column(Text)
    emergency_contact_relationship_encrypted = Column(Text)

    personal_phone_search_hash = Column(String(64), index=True)
    personal_email_search_hash = Column(String(64), index=True)

    def __repr__(self):
        return f"<TherapistPHI(id={self.id})>"


class Patient(TimestampMixin, Base):
    """患者记录"""

    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, index=True)
    name = Column(String(255))

    contact_email_encrypted = Column(Text)
    contact_phone_encrypted = Column(Text)
    dob_encrypted = Column(Text)
    gender_encrypted = Column(Text)
    race_encrypted = Column(Text)
    ssn_encrypted = Column(Text)

    contact_email_search_hash = Column(String(64), index=True)
    contact_phone_search_hash = Column(String(64), index=True)

    def __repr__(self):
        return f"<Patient(id={self.id})>"


class Client(TimestampMixin, Base):
    """来访者记录"""

    __tablename__ = "clients_hipaa"

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, index=True)
    status = Column(String(32), default="active")

    email_encrypted = Column(Text)
    phone_encrypted = Column(Text)
    address_encrypted = Column(Text)
    city_encrypted = Column(Text)
    state_encrypted = Column(Text)
    zip_code_encrypted = Column(Text)
    date_of_birth_encrypted = Column(Text)
    gender_encrypted = Column(Text)
    race_encrypted = Column(Text)
    ethnicity_encrypted = Column(Text)
    pronouns_encrypted = Column(Text)
    hometown_encrypted = Column(Text)
    notes_encrypted = Column(Text)
    diagnosis_codes_encrypted = Column(Text)
    treatment_history_encrypted = Column(Text)
    primary_diagnosis_code_encrypted = Column(Text)
    secondary_diagnosis_code_encrypted = Column(Text)
    referring_physician_encrypted = Column(Text)
    referring_physician_npi_encrypted = Column(Text)
    insurance_info_encrypted = Column(Text)
    authorization_info_encrypted = Column(Text)
    prior_auth_number_encrypted = Column(Text)
    member_id_encrypted = Column(Text)
    group_number_encrypted = Column(Text)
    primary_insured_name_encrypted = Column(Text)

    email_search_hash = Column(String(64), index=True)
    phone_search_hash = Column(String(64), index=True)

    def __repr__(self):
        return f"<Client(id={self.id})>"


class ClinicalSession(TimestampMixin, Base):
    """临床会谈记录"""

    __tablename__ = "clinical_sessions_hipaa"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, index=True)
    session_date = Column(DateTime)
    note_format = Column(String(16))  # SOAP / DAP / BIRP ...

    session_notes_encrypted = Column(Text)
    session_assessment_encrypted = Column(Text)
    session_goals_encrypted = Column(Text)

    def __repr__(self):
        return f"<ClinicalSession(id={self.id})>"


class KeyRotationHistory(Base):
    """密钥轮换审计记录, 创建后不再修改"""

    __tablename__ = "key_rotation_history"

    id = Column(Integer, primary_key=True)
    key_type = Column(String(64), nullable=False, index=True)
    rotated_by = Column(String(255))
    rotation_reason = Column(String(255))
    old_key_fingerprint = Column(String(16))  # 仅保存末8位
    new_key_fingerprint = Column(String(16))
    records_reencrypted = Column(Integer, default=0)
    entity_counts = Column(Text)  # JSON: {实体名: 记录数}
    fields_skipped = Column(Integer, default=0)
    rotation_status = Column(String(16), default="completed")
    rotated_at = Column(DateTime, default=_utcnow, index=True)

    def __repr__(self):
        return f"<KeyRotationHistory(id={self.id}, status={self.rotation_status})>"


def init_db(engine):
    """
    初始化数据库表

    Args:
        engine: SQLAlchemy引擎
    """
    Base.metadata.create_all(engine)
