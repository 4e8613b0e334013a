"""构建：项目、打包、阶段编排"""
