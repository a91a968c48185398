"""
加密字段注册表

集中声明每类实体的加密列与搜索哈希列, 轮换、校验和字段加解密均以此为准。
"""

from typing import Any, Dict, NamedTuple, Optional, Tuple

from sqlalchemy.orm.attributes import InstrumentedAttribute

from .models import Client, ClinicalSession, Patient, TherapistPHI

ENCRYPTED_SUFFIX = "_encrypted"


class EntityFields(NamedTuple):
    """一类实体的加密字段声明"""

    name: str
    label: str
    model: type
    fields: Tuple[InstrumentedAttribute, ...]
    # 明文字段名 -> 搜索哈希列
    search_hashes: Dict[str, InstrumentedAttribute]

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(field.key for field in self.fields)


def plain_name(field: InstrumentedAttribute) -> str:
    """加密列对应的明文字段名, 如 ssn_encrypted -> ssn"""
    return field.key[: -len(ENCRYPTED_SUFFIX)]


def _entity(name, label, model, fields, search_hashes=None) -> EntityFields:
    for field in fields:
        if field.class_ is not model or not field.key.endswith(ENCRYPTED_SUFFIX):
            raise TypeError(f"{field} is not an encrypted column of {model.__name__}")

    search_hashes = dict(search_hashes or {})
    plain_names = {plain_name(field) for field in fields}
    for plain, column in search_hashes.items():
        if plain not in plain_names or column.class_ is not model:
            raise TypeError(f"Search hash {column} does not match a field of {model.__name__}")

    return EntityFields(name, label, model, tuple(fields), search_hashes)


# 按轮换顺序排列
ENCRYPTED_ENTITIES: Dict[str, EntityFields] = {
    entity.name: entity
    for entity in (
        _entity(
            "therapist_phi",
            "Therapist PHI",
            TherapistPHI,
            (
                TherapistPHI.ssn_encrypted,
                TherapistPHI.dob_encrypted,
                TherapistPHI.gender_encrypted,
                TherapistPHI.race_encrypted,
                TherapistPHI.home_address_encrypted,
                TherapistPHI.home_city_encrypted,
                TherapistPHI.home_state_encrypted,
                TherapistPHI.home_zip_encrypted,
                TherapistPHI.personal_phone_encrypted,
                TherapistPHI.personal_email_encrypted,
                TherapistPHI.birth_city_encrypted,
                TherapistPHI.birth_state_encrypted,
                TherapistPHI.birth_country_encrypted,
                TherapistPHI.work_permit_visa_encrypted,
                TherapistPHI.emergency_contact_name_encrypted,
                TherapistPHI.emergency_contact_phone_encrypted,
                TherapistPHI.emergency_contact_relationship_encrypted,
            ),
            {
                "personal_phone": TherapistPHI.personal_phone_search_hash,
                "personal_email": TherapistPHI.personal_email_search_hash,
            },
        ),
        _entity(
            "patients",
            "Patient records",
            Patient,
            (
                Patient.contact_email_encrypted,
                Patient.contact_phone_encrypted,
                Patient.dob_encrypted,
                Patient.gender_encrypted,
                Patient.race_encrypted,
                Patient.ssn_encrypted,
            ),
            {
                "contact_email": Patient.contact_email_search_hash,
                "contact_phone": Patient.contact_phone_search_hash,
            },
        ),
        _entity(
            "clients",
            "Client records",
            Client,
            (
                Client.email_encrypted,
                Client.phone_encrypted,
                Client.address_encrypted,
                Client.city_encrypted,
                Client.state_encrypted,
                Client.zip_code_encrypted,
                Client.date_of_birth_encrypted,
                Client.gender_encrypted,
                Client.race_encrypted,
                Client.ethnicity_encrypted,
                Client.pronouns_encrypted,
                Client.hometown_encrypted,
                Client.notes_encrypted,
                Client.diagnosis_codes_encrypted,
                Client.treatment_history_encrypted,
                Client.primary_diagnosis_code_encrypted,
                Client.secondary_diagnosis_code_encrypted,
                Client.referring_physician_encrypted,
                Client.referring_physician_npi_encrypted,
                Client.insurance_info_encrypted,
                Client.authorization_info_encrypted,
                Client.prior_auth_number_encrypted,
                Client.member_id_encrypted,
                Client.group_number_encrypted,
                Client.primary_insured_name_encrypted,
            ),
            {
                "email": Client.email_search_hash,
                "phone": Client.phone_search_hash,
            },
        ),
        _entity(
            "clinical_sessions",
            "Clinical sessions",
            ClinicalSession,
            (
                ClinicalSession.session_notes_encrypted,
                ClinicalSession.session_assessment_encrypted,
                ClinicalSession.session_goals_encrypted,
            ),
        ),
    )
}


def get_entity(name: str) -> EntityFields:
    """
    按名称获取实体声明

    Raises:
        KeyError: 未注册的实体
    """
    try:
        return ENCRYPTED_ENTITIES[name]
    except KeyError:
        raise KeyError(
            f"Unknown encrypted entity {name!r}; expected one of {sorted(ENCRYPTED_ENTITIES)}"
        ) from None


def encrypt_entity_fields(entity: EntityFields, data: Dict[str, Optional[str]], service) -> Dict[str, Any]:
    """
    将明文字典加密为实体的列值, 并填充对应的搜索哈希列

    Args:
        entity: 实体声明
        data: 明文字段名 -> 明文, 如 {"ssn": "123-45-6789"}
        service: PHIEncryptionService实例

    Returns:
        列名 -> 列值, 空值字段不出现在结果中

    Raises:
        KeyError: data中包含未声明的字段
    """
    by_plain = {plain_name(field): field for field in entity.fields}
    unknown = set(data) - set(by_plain)
    if unknown:
        raise KeyError(f"Fields not declared for {entity.name}: {sorted(unknown)}")

    values: Dict[str, Any] = {}
    for plain, plaintext in data.items():
        encrypted = service.encrypt(plaintext)
        if encrypted is None:
            continue
        values[by_plain[plain].key] = encrypted
        hash_column = entity.search_hashes.get(plain)
        if hash_column is not None:
            values[hash_column.key] = service.create_search_hash(plaintext)
    return values


def decrypt_entity_fields(entity: EntityFields, record, service) -> Dict[str, Optional[str]]:
    """
    解密一条记录的全部加密字段

    Args:
        entity: 实体声明
        record: 模型实例
        service: PHIEncryptionService实例

    Returns:
        明文字段名 -> 明文
    """
    return {
        plain_name(field): service.decrypt(getattr(record, field.key))
        for field in entity.fields
    }
