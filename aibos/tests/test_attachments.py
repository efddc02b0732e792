"""Tests for attachment upload, dedupe, linking and batch operations."""

from __future__ import annotations

import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, ValidationFailed
from aibos.app.models.attachment import (
    Attachment,
    AttachmentCategory,
    AttachmentLink,
    AttachmentStatus,
    EntityType,
)
from aibos.app.models.tenant import Company, Tenant
from aibos.app.services import attachments as attachment_service
from aibos.app.services.attachments import clean_tags
from aibos.app.services.audit import Actor
from aibos.app.services.file_service import FileStorageService, StoragePathError
from aibos.tests.conftest import auth

RECEIPT = b"%PDF-1.4 fake receipt body"


@pytest.fixture()
def storage(tmp_path: Path) -> FileStorageService:
    return FileStorageService(str(tmp_path / "store"))


def _upload(
    db: Session,
    actor: Actor,
    company: Company,
    storage: FileStorageService,
    content: bytes = RECEIPT,
    **kwargs,
) -> attachment_service.UploadResult:
    return attachment_service.upload_attachment(
        db,
        actor,
        tenant_id=company.tenant_id,
        company_id=company.id,
        filename=kwargs.pop("filename", "receipt.pdf"),
        content=content,
        mime_type=kwargs.pop("mime_type", "application/pdf"),
        storage=storage,
        **kwargs,
    )


class TestFileStorage:
    def test_round_trip(self, storage: FileStorageService) -> None:
        storage.save("a/b/c.txt", b"hello")
        assert storage.exists("a/b/c.txt")
        assert storage.read("a/b/c.txt") == b"hello"
        storage.delete("a/b/c.txt")
        assert not storage.exists("a/b/c.txt")

    @pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "a/../../b"])
    def test_rejects_paths_outside_root(self, storage: FileStorageService, path: str) -> None:
        with pytest.raises(StoragePathError):
            storage.save(path, b"x")


class TestTags:
    def test_strips_and_dedupes(self) -> None:
        assert clean_tags([" q1 ", "utilities", "q1"]) == ["q1", "utilities"]

    def test_rejects_blank_tag(self) -> None:
        with pytest.raises(ValidationFailed) as exc:
            clean_tags(["ok", "  "])
        assert exc.value.code == "INVALID_TAG"

    def test_rejects_too_many(self) -> None:
        with pytest.raises(ValidationFailed) as exc:
            clean_tags([f"t{i}" for i in range(21)])
        assert exc.value.code == "TOO_MANY_TAGS"


class TestUpload:
    def test_stores_file_and_metadata(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        result = _upload(
            db,
            admin_actor,
            company,
            storage,
            category=AttachmentCategory.RECEIPT,
            tags=["fuel", "march"],
        )

        attachment = result.attachment
        assert result.duplicate is False
        assert attachment.original_filename == "receipt.pdf"
        assert attachment.filename.endswith(".pdf")
        assert attachment.file_size == len(RECEIPT)
        assert attachment.storage_path.startswith(
            f"{company.tenant_id}/{company.id}/receipt/"
        )
        assert attachment.tags == ["fuel", "march"]
        assert attachment_service.read_content(attachment, storage) == RECEIPT

    def test_same_content_is_a_duplicate(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        first = _upload(db, admin_actor, company, storage)
        entity_id = uuid.uuid4()

        second = _upload(
            db,
            admin_actor,
            company,
            storage,
            filename="copy.pdf",
            entity_type=EntityType.BILL,
            entity_id=entity_id,
        )

        assert second.duplicate is True
        assert second.attachment.id == first.attachment.id
        assert db.query(Attachment).count() == 1
        link = db.query(AttachmentLink).one()
        assert link.entity_id == entity_id

    @pytest.mark.parametrize(
        ("content", "mime", "code"),
        [
            (b"", "application/pdf", "EMPTY_FILE"),
            (b"MZ\x90\x00", "application/x-msdownload", "UNSUPPORTED_FILE_TYPE"),
        ],
    )
    def test_rejected_uploads(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
        content: bytes,
        mime: str,
        code: str,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            _upload(db, admin_actor, company, storage, content=content, mime_type=mime)
        assert exc.value.code == code

    def test_entity_type_needs_entity_id(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            _upload(db, admin_actor, company, storage, entity_type=EntityType.INVOICE)
        assert exc.value.code == "INVALID_ENTITY"


class TestManage:
    def test_link_twice_conflicts(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        attachment = _upload(db, admin_actor, company, storage).attachment
        invoice_id = uuid.uuid4()
        kwargs = dict(
            tenant_id=company.tenant_id,
            company_id=company.id,
            attachment_id=attachment.id,
            entity_type=EntityType.INVOICE,
            entity_id=invoice_id,
        )
        attachment_service.link_attachment(db, admin_actor, **kwargs)
        with pytest.raises(ConflictError) as exc:
            attachment_service.link_attachment(db, admin_actor, **kwargs)
        assert exc.value.code == "LINK_EXISTS"

        rows, total = attachment_service.list_attachments(
            db,
            company.tenant_id,
            company.id,
            entity_type=EntityType.INVOICE,
            entity_id=invoice_id,
        )
        assert total == 1
        assert rows[0].id == attachment.id

    def test_list_filters_by_tag(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        _upload(db, admin_actor, company, storage, tags=["payroll"])
        _upload(db, admin_actor, company, storage, content=b"%PDF other", tags=["rent"])

        rows, total = attachment_service.list_attachments(
            db, company.tenant_id, company.id, tag="rent"
        )
        assert total == 1
        assert rows[0].tags == ["rent"]

    def test_soft_delete_hides_attachment(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        attachment = _upload(db, admin_actor, company, storage).attachment
        attachment_service.delete_attachment(
            db,
            admin_actor,
            tenant_id=company.tenant_id,
            company_id=company.id,
            attachment_id=attachment.id,
        )

        assert attachment.status == AttachmentStatus.DELETED
        _, total = attachment_service.list_attachments(db, company.tenant_id, company.id)
        assert total == 0
        # The file stays on disk for the retention job.
        assert storage.exists(attachment.storage_path)

    def test_batch_reports_unknown_ids(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        attachment = _upload(db, admin_actor, company, storage, tags=["q1"]).attachment
        missing = uuid.uuid4()

        result = attachment_service.batch_operation(
            db,
            admin_actor,
            tenant_id=company.tenant_id,
            company_id=company.id,
            attachment_ids=[attachment.id, missing],
            operation="add_tags",
            data={"tags": ["audited"]},
        )

        assert result.succeeded == 1
        assert result.failed == 1
        assert attachment.tags == ["q1", "audited"]

    def test_batch_rejects_bad_category(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        storage: FileStorageService,
    ) -> None:
        attachment = _upload(db, admin_actor, company, storage).attachment
        with pytest.raises(ValidationFailed) as exc:
            attachment_service.batch_operation(
                db,
                admin_actor,
                tenant_id=company.tenant_id,
                company_id=company.id,
                attachment_ids=[attachment.id],
                operation="update_category",
                data={"category": "memes"},
            )
        assert exc.value.code == "INVALID_BATCH_DATA"


class TestAttachmentAPI:
    def test_upload_then_download(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        headers = auth(accountant_token, tenant, company)
        resp = client.post(
            "/api/v1/attachments",
            files={"file": ("invoice-0042.pdf", RECEIPT, "application/pdf")},
            data={"category": "invoice", "tags": "2025, supplier"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["duplicate"] is False
        assert body["attachment"]["tags"] == ["2025", "supplier"]

        again = client.post(
            "/api/v1/attachments",
            files={"file": ("again.pdf", RECEIPT, "application/pdf")},
            headers=headers,
        )
        assert again.status_code == 200
        assert again.json()["duplicate"] is True

        download = client.get(
            f"/api/v1/attachments/{body['attachment']['id']}/download", headers=headers
        )
        assert download.status_code == 200
        assert download.content == RECEIPT
        assert 'filename="invoice-0042.pdf"' in download.headers["content-disposition"]

    def test_accountant_cannot_delete(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        headers = auth(accountant_token, tenant, company)
        created = client.post(
            "/api/v1/attachments",
            files={"file": ("a.txt", b"notes", "text/plain")},
            headers=headers,
        ).json()
        resp = client.delete(f"/api/v1/attachments/{created['attachment']['id']}", headers=headers)
        assert resp.status_code == 403

    def test_unknown_attachment_is_404(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get(
            f"/api/v1/attachments/{uuid.uuid4()}", headers=auth(admin_token, tenant, company)
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "ATTACHMENT_NOT_FOUND"
