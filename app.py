import logging
import os

import streamlit as st

from keystore_explorer import service
from keystore_explorer.config import get_settings
from keystore_explorer.errors import (
    CertificateLoadError,
    ConversionError,
    ExportError,
    KeystoreLoadError,
    UnsupportedFileError,
    looks_like_password_error,
)
from keystore_explorer.logging_config import configure_logging
from keystore_explorer.models import ExportFormat, KeyEntry, KeystoreFormat, KeystoreHandle

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Page config
st.set_page_config(page_title="Keystore Explorer", page_icon="🔑", layout="wide")

st.title("🔑 Keystore Explorer")
st.markdown("Inspect JKS, JCEKS and PKCS12 keystores or certificate files, export certificates and convert JKS to PKCS12.")

with st.sidebar:
    st.header("Instructions")
    st.markdown("""
    - Upload a keystore or certificate file.
    - Enter the keystore password. Leave it empty to open a keystore without checking its integrity.
    - Enter a key password only if private keys use a different one.
    - Pick an entry to see its details and download its certificate.
    **Security Note:** Files and passwords stay in this session's memory only.
    """)
    st.markdown("### Supported files")
    st.markdown(
        f"**Keystores:** {', '.join(service.KEYSTORE_EXTENSIONS)}  \n"
        f"**Certificates:** {', '.join(service.CERTIFICATE_EXTENSIONS)}"
    )


def _close_handle():
    handle = st.session_state.get("handle")
    if handle is not None:
        handle.close()


if "records" not in st.session_state:
    st.session_state.handle = None
    st.session_state.records = []
    st.session_state.source_name = None
    st.session_state.pkcs12 = None

uploaded = st.file_uploader("Choose a keystore or certificate file")
col1, col2 = st.columns(2)
with col1:
    password = st.text_input("Keystore Password", type="password")
with col2:
    key_password = st.text_input("Key Password (optional)", type="password")

if st.button("Load", disabled=uploaded is None):
    if uploaded.size > settings.max_upload_bytes:
        st.error(f"File is larger than {settings.max_upload_mb} MB")
    else:
        try:
            opened = service.open_file(uploaded, password)
            records = service.list_entries(opened) if isinstance(opened, KeystoreHandle) else opened
        except UnsupportedFileError as e:
            st.error(f"{e}. Expected a keystore or a PEM, DER or PKCS7 certificate file.")
        except KeystoreLoadError as e:
            hint = " Check the keystore password." if looks_like_password_error(e) else ""
            st.error(f"Failed to load keystore: {e}.{hint}")
        except CertificateLoadError as e:
            st.error(f"Failed to load certificates: {e}")
        else:
            _close_handle()
            st.session_state.handle = opened if isinstance(opened, KeystoreHandle) else None
            st.session_state.records = records
            st.session_state.source_name = uploaded.name
            st.session_state.pkcs12 = None
            logger.info("Opened %s with %d entries", uploaded.name, len(records))
            st.success(f"Loaded {len(records)} entries from {uploaded.name}")
            if st.session_state.handle is not None and not password:
                st.warning("No keystore password given: the keystore integrity was not verified.")

if st.session_state.source_name:
    handle = st.session_state.handle
    records = st.session_state.records
    convertible = handle is not None and handle.format in (KeystoreFormat.JKS, KeystoreFormat.JCEKS)

    tab_names = ["📋 Entries", "🔍 Certificate Details"]
    if convertible:
        tab_names.append("🔄 Convert to PKCS12")
    tabs = st.tabs(tab_names)

    with tabs[0]:
        label = f"{handle.format} keystore" if handle is not None else "Certificate file"
        st.subheader(f"{label}: {st.session_state.source_name}")
        if records:
            st.dataframe([r.as_row() for r in records], hide_index=True)
        else:
            st.info("The file contains no entries.")

    with tabs[1]:
        with_certificates = [r for r in records if r.certificate is not None]
        if not with_certificates:
            st.info("No entry carries a certificate.")
        else:
            index = st.selectbox(
                "Entry",
                range(len(with_certificates)),
                format_func=lambda i: f"{with_certificates[i].alias} ({with_certificates[i].entry_kind})",
            )
            record = with_certificates[index]
            try:
                detail = service.certificate_detail([record], record.alias)
            except CertificateLoadError as e:
                st.error(f"Failed to read certificate: {e}")
            else:
                col1, col2 = st.columns(2)
                with col1:
                    st.write(f"**Subject:** {detail.subject}")
                    st.write(f"**Issuer:** {detail.issuer}")
                    st.write(f"**Valid From:** {record.valid_from}")
                    st.write(f"**Valid Until:** {record.valid_until}")
                    st.write(f"**Basic Constraints:** {detail.basic_constraints}")
                with col2:
                    st.write(f"**Serial Number:** {record.serial_number}")
                    st.write(f"**Signature Algorithm:** {record.signature_algorithm}")
                    st.write(f"**Key Usage:** {', '.join(detail.key_usage) or 'none'}")
                    st.write(f"**Extended Key Usage:** {', '.join(detail.extended_key_usage) or 'none'}")
                st.write("**Subject Alternative Names:**")
                if detail.subject_alt_names:
                    st.markdown("\n".join(f"- `{name}`" for name in detail.subject_alt_names))
                else:
                    st.write("none")
                st.write("**Fingerprints:**")
                st.code(
                    f"MD5:     {detail.fingerprint_md5}\n"
                    f"SHA-1:   {detail.fingerprint_sha1}\n"
                    f"SHA-256: {detail.fingerprint_sha256}",
                    language=None,
                )

                try:
                    pem = service.export_certificate(record.certificate, ExportFormat.PEM)
                    der = service.export_certificate(record.certificate, ExportFormat.DER)
                except ExportError as e:
                    st.error(f"Failed to export certificate: {e}")
                else:
                    col1, col2, col3 = st.columns(3)
                    with col1:
                        st.download_button(
                            label="Download PEM",
                            data=pem,
                            file_name=service.export_filename(record.alias, ExportFormat.PEM),
                            mime="application/x-pem-file",
                        )
                    with col2:
                        st.download_button(
                            label="Download DER",
                            data=der,
                            file_name=service.export_filename(record.alias, ExportFormat.DER),
                            mime="application/pkix-cert",
                        )
                    entry = handle.get(record.alias) if handle is not None else None
                    if isinstance(entry, KeyEntry) and len(entry.certificate_chain) > 1:
                        with col3:
                            st.download_button(
                                label="Download PEM Chain",
                                data=service.export_chain(entry.certificate_chain),
                                file_name=service.export_filename(record.alias + "_chain"),
                                mime="application/x-pem-file",
                            )

    if convertible:
        with tabs[2]:
            st.subheader("Convert to PKCS12")
            st.markdown(
                "Private keys are recovered with the key password, or the keystore password when it is empty. "
                "The PKCS12 file is protected with the keystore password."
            )
            if st.button("Convert"):
                try:
                    converted = service.convert_to_pkcs12(handle, password, key_password)
                    st.session_state.pkcs12 = service.write_pkcs12(converted, password)
                except ConversionError as e:
                    st.session_state.pkcs12 = None
                    st.error(f"Failed to convert keystore: {e}")
                else:
                    st.success(f"Converted {len(converted)} entries to PKCS12")
                    converted.close()
            if st.session_state.pkcs12:
                stem = os.path.splitext(st.session_state.source_name)[0] or "keystore"
                st.download_button(
                    label="Download PKCS12",
                    data=st.session_state.pkcs12,
                    file_name=f"{stem}.p12",
                    mime="application/x-pkcs12",
                )
else:
    st.info("👆 Upload a keystore or certificate file to get started.")

if st.button("Clear Session"):
    _close_handle()
    for key in list(st.session_state.keys()):
        del st.session_state[key]
    st.rerun()
