# app.py
"""
Market Dashboard Builder - Data Preview Entry Point

Upload value / volume / segmentation JSON, check the import, filter the
geography x segment matrix and download the export files.

Version: 2.0.0
"""

import streamlit as st
import logging

from market_dashboard.config import config
from market_dashboard.aggregation_engine import (
    B2B,
    B2C,
    BuildCancelled,
    DataLoadError,
    DatasetHolder,
    FilterSpec,
    MarketMatrixExport,
    MarketMetrics,
    build_export_payloads,
    determine_aggregation_level,
    records_to_dataframe,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ==================== PAGE CONFIGURATION ====================

APP_NAME = "Market Dashboard Builder"
APP_ICON = "📊"
APP_VERSION = "2.0.0"

st.set_page_config(
    page_title=APP_NAME,
    page_icon=APP_ICON,
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .main-header {
        font-size: 2.5rem;
        font-weight: bold;
        margin-bottom: 0.5rem;
        color: #1f77b4;
    }

    .sub-header {
        font-size: 1.1rem;
        color: #666;
        margin-bottom: 2rem;
    }
</style>
""", unsafe_allow_html=True)

# ==================== INITIALIZATION ====================

if 'dataset_holder' not in st.session_state:
    st.session_state['dataset_holder'] = DatasetHolder()

holder: DatasetHolder = st.session_state['dataset_holder']
engine_config = config.get_engine_config()
export_config = config.get_export_config()

# ==================== HELPER FUNCTIONS ====================

def show_upload_section():
    """Upload inputs and build a new dataset"""
    with st.form("upload_form", clear_on_submit=False):
        st.markdown("#### 📂 Input Files")
        col1, col2, col3 = st.columns(3)
        with col1:
            value_file = st.file_uploader("Value JSON (required)", type=["json"], key="value_upload")
        with col2:
            volume_file = st.file_uploader("Volume JSON", type=["json"], key="volume_upload")
        with col3:
            segmentation_file = st.file_uploader("Segmentation JSON", type=["json"], key="segmentation_upload")

        submit = st.form_submit_button("🔄 Build Dataset", type="primary", use_container_width=True)

    if not submit:
        return

    if value_file is None:
        st.warning("Please upload the value JSON file")
        return

    with st.spinner("Processing market data..."):
        future = holder.build_in_background(
            value_file,
            volume=volume_file,
            segmentation=segmentation_file,
            label=value_file.name
        )
        try:
            dataset = future.result()
        except DataLoadError as e:
            st.error(f"⚠️ {e.message}")
            logger.error(f"Load failed: {e.to_dict()}")
            return
        except BuildCancelled as e:
            st.warning(str(e))
            return

    if not holder.is_current(dataset):
        st.info("A newer upload replaced this build; showing the latest dataset")
        return

    st.success(f"✅ Dataset built: {len(dataset.records()):,} value records")


def render_filters(dataset) -> FilterSpec:
    """Sidebar widgets -> FilterSpec"""
    data = dataset.data
    metadata = data.metadata

    with st.sidebar:
        st.markdown("### 🔎 Filters")

        segment_types = data.segment_types
        segment_type = st.selectbox("Segment Type", segment_types) if segment_types else None

        geographies = st.multiselect("Geographies", data.geographies.all_geographies)

        business_type = None
        dimension = dataset.dimension(segment_type) if segment_type else None
        if dimension is not None and dimension.has_business_partition:
            choice = st.radio("Business Type", ["All", B2B, B2C], horizontal=True)
            business_type = None if choice == "All" else choice

        items = dimension.get_items(business_type) if dimension is not None else []
        segments = st.multiselect("Segments", list(dict.fromkeys(items)))

        year_range = None
        if metadata.years and len(metadata.years) > 1:
            year_range = st.slider(
                "Years",
                min_value=metadata.start_year,
                max_value=metadata.forecast_year,
                value=(metadata.start_year, metadata.forecast_year)
            )
        elif metadata.years:
            year_range = (metadata.years[0], metadata.years[0])

        leaf_only = st.checkbox(
            "Leaf segments only",
            value=True,
            help="Excludes aggregated parent rows so totals are not double counted"
        )
        include_sub = st.checkbox("Include sub-segments of selected", value=True)

    level = None
    if segments and not leaf_only:
        level = determine_aggregation_level(dataset.records(), segments, segment_type)

    return FilterSpec(
        segment_type=segment_type,
        geographies=geographies,
        segments=segments,
        business_type=business_type,
        year_range=year_range,
        leaf_only=leaf_only,
        aggregation_level=level,
        match_descendants=include_sub,
    )


def show_dataset(dataset):
    """KPI totals, matrix table, import issues and downloads"""
    data = dataset.data
    metadata = data.metadata
    report = dataset.report

    if report.has_issues:
        st.warning(f"⚠️ {report.summary()}")
    else:
        st.caption(report.summary())

    spec = render_filters(dataset)
    records = dataset.query(spec)

    # Caller-side fallback: relax geography, then segment type
    if not records and spec.geographies:
        st.info("No rows for the selected geographies, showing all geographies")
        spec = spec.without_geographies()
        records = dataset.query(spec)
    if not records and spec.segment_type:
        st.info(f"No rows for '{spec.segment_type}', showing all segment types")
        spec = spec.without_segment_type()
        records = dataset.query(spec)

    # KPIs always on leaf records
    totals = dataset.leaf_totals(spec)
    metrics = MarketMetrics([r for r in records if not r.is_aggregated])

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        year = metadata.base_year
        st.metric(
            f"Market Size {year or ''}",
            f"{totals.get(year, 0):,.2f}" if year else "N/A",
            help=f"{metadata.currency} {metadata.value_unit}, leaf segments only"
        )
    with col2:
        end_year = spec.year_range[1] if spec.year_range else metadata.forecast_year
        st.metric(f"Market Size {end_year or ''}", f"{totals.get(end_year, 0):,.2f}" if end_year else "N/A")
    with col3:
        st.metric("Records", f"{len(records):,}")
    with col4:
        st.metric("Geographies", len(metrics.get_unique_geographies()))

    st.markdown("### 📋 Geography x Segment Matrix")
    df = records_to_dataframe(
        records,
        level_columns=engine_config.hierarchy_level_columns,
        years=[y for y in metadata.years if not spec.year_range or spec.year_range[0] <= y <= spec.year_range[1]]
    )
    df.columns = [str(c) for c in df.columns]
    st.dataframe(df, use_container_width=True, hide_index=True)

    if metadata.years:
        col_top, col_growth = st.columns(2)
        with col_top:
            st.markdown("#### 🏆 Top Performers")
            st.table(metrics.find_top_performers(metadata.base_year))
        with col_growth:
            st.markdown("#### 🚀 Fastest Growing")
            st.table(metrics.find_fastest_growing())

    if report.has_issues:
        with st.expander(f"🔧 Import Issues ({len(report.warnings)})"):
            st.dataframe(
                [{'code': w.code.value, 'location': w.location, 'message': w.message} for w in report.warnings],
                use_container_width=True,
                hide_index=True
            )

    st.markdown("### ⬇️ Export")
    payloads = build_export_payloads(
        data,
        max_depth=engine_config.max_depth,
        value_file=export_config.value_file,
        volume_file=export_config.volume_file,
        segmentation_file=export_config.segmentation_file
    )
    columns = st.columns(len(payloads) + 1)
    for col, (file_name, content) in zip(columns, payloads.items()):
        with col:
            st.download_button(
                label=f"📄 {file_name}",
                data=content,
                file_name=file_name,
                mime="application/json",
                use_container_width=True
            )

    if config.is_feature_enabled("EXCEL_EXPORT"):
        with columns[-1]:
            excel_bytes = MarketMatrixExport(
                level_columns=engine_config.hierarchy_level_columns
            ).create_matrix_report(data, records, report=report, filters=spec)
            st.download_button(
                label="📊 Excel Report",
                data=excel_bytes,
                file_name="market_matrix.xlsx",
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                use_container_width=True
            )


# ==================== MAIN ====================

def main():
    """Main application entry point"""
    st.markdown(f'<p class="main-header">{APP_ICON} {APP_NAME}</p>', unsafe_allow_html=True)
    st.markdown('<p class="sub-header">Hierarchical market data preview</p>', unsafe_allow_html=True)

    show_upload_section()

    dataset = holder.current
    if dataset is None:
        st.info("Upload a value JSON file to get started.")
        return

    show_dataset(dataset)

    st.caption(f"{APP_NAME} v{APP_VERSION}")


if __name__ == "__main__":
    main()
