import io

import pytest

from conftest import STORE_PASSWORD, der, pem
from keystore_explorer import service
from keystore_explorer.errors import CertificateLoadError, UnsupportedFileError
from keystore_explorer.models import ExportFormat, KeystoreFormat, KeystoreHandle


class NamedBytesIO(io.BytesIO):
    """Stand-in for Streamlit's UploadedFile."""

    def __init__(self, data, name):
        super().__init__(data)
        self.name = name


@pytest.mark.parametrize("filename, kind", [
    ("store.jks", service.KEYSTORE),
    ("store.P12", service.KEYSTORE),
    ("cert.crt", service.CERTIFICATE),
    ("chain.p7b", service.CERTIFICATE),
    ("notes.txt", None),
    ("", None),
])
def test_classify_file(filename, kind):
    assert service.classify_file(filename) == kind


def test_load_keystore_from_path(tmp_path, jks_bytes):
    path = tmp_path / "store.jks"
    path.write_bytes(jks_bytes)

    handle = service.load_keystore(path, STORE_PASSWORD)
    assert handle.aliases() == ["server", "root"]


def test_load_certificates_from_file_object(leaf_cert):
    records = service.load_certificates(NamedBytesIO(pem(leaf_cert), "server.pem"))
    assert records[0].certificate == der(leaf_cert)


def test_open_file_dispatches_on_extension(jks_bytes, ca_cert):
    assert isinstance(service.open_file(NamedBytesIO(jks_bytes, "a.jks"), STORE_PASSWORD), KeystoreHandle)
    assert isinstance(service.open_file(NamedBytesIO(pem(ca_cert), "a.pem")), list)


def test_open_file_unknown_extension_tries_certificates_first(ca_cert):
    records = service.open_file(NamedBytesIO(der(ca_cert), "download.bin"))
    assert len(records) == 1


def test_open_file_unknown_extension_falls_back_to_keystore(jks_bytes):
    handle = service.open_file(NamedBytesIO(jks_bytes, "download.bin"), STORE_PASSWORD)
    assert handle.format is KeystoreFormat.JKS


def test_open_file_gives_up(tmp_path):
    path = tmp_path / "random.bin"
    path.write_bytes(b"neither keystore nor certificate")

    with pytest.raises(UnsupportedFileError) as excinfo:
        service.open_file(path)
    assert excinfo.value.__cause__ is not None


def test_open_file_known_certificate_extension_reports_certificate_error():
    with pytest.raises(CertificateLoadError):
        service.open_file(NamedBytesIO(b"garbage", "cert.pem"))


def test_certificate_detail_from_handle(jks_bytes):
    handle = service.load_keystore(jks_bytes, STORE_PASSWORD)
    detail = service.certificate_detail(handle, "server")
    assert detail.subject == "CN=server.example.com,O=Example Org"


def test_certificate_detail_from_records(ca_cert):
    records = service.load_certificates(der(ca_cert))
    detail = service.certificate_detail(records, records[0].alias)
    assert detail.basic_constraints.is_ca


def test_certificate_detail_unknown_alias(ca_cert):
    records = service.load_certificates(der(ca_cert))
    with pytest.raises(KeyError):
        service.certificate_detail(records, "missing")


def test_convert_and_write(jks_bytes):
    handle = service.load_keystore(NamedBytesIO(jks_bytes, "store.jks"), STORE_PASSWORD)
    converted = service.convert_to_pkcs12(handle, STORE_PASSWORD)
    data = service.write_pkcs12(converted, STORE_PASSWORD)

    reloaded = service.load_keystore(NamedBytesIO(data, "store.p12"), STORE_PASSWORD)
    assert reloaded.aliases() == ["server", "root"]


def test_export_helpers(ca_cert, leaf_cert):
    assert service.export_certificate(der(ca_cert), ExportFormat.DER) == der(ca_cert)
    assert service.export_chain([der(leaf_cert), der(ca_cert)]).count(b"BEGIN CERTIFICATE") == 2
    assert service.export_filename("CN=a/b", ExportFormat.DER) == "CN=a_b.der"
    assert service.export_filename("", ExportFormat.PEM) == "certificate.pem"


def test_certificate_detail_from_file(leaf_cert):
    detail = service.certificate_detail(NamedBytesIO(pem(leaf_cert), "server.pem"),
                                        "CN=server.example.com,O=Example Org")
    assert detail.subject_alt_names == ("server.example.com", "10.0.0.1")
