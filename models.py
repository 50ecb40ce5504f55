from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, String, Text, UniqueConstraint

from db import Base


class Candidate(Base):
    __tablename__ = "candidates"

    candidateId = Column(String, primary_key=True)
    fullName = Column(Text, nullable=False, default="")
    givenName = Column(Text, nullable=False, default="")
    surname = Column(Text, nullable=False, default="")
    fatherName = Column(Text, nullable=False, default="")
    sex = Column(String, nullable=False, default="")
    dateOfBirth = Column(Text, nullable=False, default="")
    placeOfBirth = Column(Text, nullable=False, default="")
    nationality = Column(Text, nullable=False, default="")
    passportNumber = Column(String, nullable=False, default="", index=True)
    passportType = Column(String, nullable=False, default="")
    passportIssueDate = Column(Text, nullable=False, default="")
    passportExpiryDate = Column(Text, nullable=False, default="")
    issuingAuthority = Column(Text, nullable=False, default="")
    personalNumber = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    destinationCountry = Column(Text, nullable=False, default="")
    employer = Column(Text, nullable=False, default="")
    jobTitle = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    currentStage = Column(String, nullable=False, index=True)
    # Compliance dates (YYYY-MM-DD); empty when not yet known.
    medicalFitDate = Column(Text, nullable=False, default="")
    visaIssueDate = Column(Text, nullable=False, default="")
    # Bumped on every write; conditional updates compare against it.
    version = Column(Integer, nullable=False, default=1)
    createdAt = Column(Text, nullable=False, default="", index=True)
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class StageHistory(Base):
    __tablename__ = "stage_history"

    historyId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    stage = Column(String, nullable=False, index=True)
    fromStage = Column(String, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="", index=True)
    notes = Column(Text, nullable=False, default="")
    actorId = Column(String, nullable=False, default="")
    actorLabel = Column(Text, nullable=False, default="")


class StageDocument(Base):
    __tablename__ = "stage_documents"
    __table_args__ = (UniqueConstraint("stage", "documentName", name="uq_stage_documents_stage_name"),)

    id = Column(String, primary_key=True)
    stage = Column(String, nullable=False, index=True)
    documentName = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    isRequired = Column(Boolean, nullable=False, default=True)
    displayOrder = Column(Integer, nullable=False, default=0)
    createdAt = Column(Text, nullable=False, default="")


class CandidateDocument(Base):
    __tablename__ = "candidate_documents"
    __table_args__ = (
        UniqueConstraint("candidateId", "stageDocumentId", name="uq_candidate_documents_candidate_doc"),
    )

    id = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    stageDocumentId = Column(String, nullable=False, index=True)
    isCompleted = Column(Boolean, nullable=False, default=False)
    completedAt = Column(Text, nullable=True)
    notes = Column(Text, nullable=False, default="")
    fileRef = Column(Text, nullable=True)
    fileName = Column(Text, nullable=True)
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    actorId = Column(String, nullable=False, default="", index=True)
    actorLabel = Column(Text, nullable=False, default="")
    action = Column(String, nullable=False, default="", index=True)
    entityName = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    oldJson = Column(Text, nullable=False, default="")
    newJson = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="", index=True)
